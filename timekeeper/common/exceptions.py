"""Problem Details (RFC 7807) errors raised by the attendance, regularization
and leave services, plus the FastAPI handlers that render them.

Every error carries a short ``error_type`` slug that becomes the problem
``type`` URI. Extra members (``existing_id``, ``current_status``) are
rendered next to the standard ones so clients can link to the record that
blocked the write.
"""

from __future__ import annotations

import uuid
from typing import Any, ClassVar, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://timekeeper.local/errors"
PROBLEM_JSON = "application/problem+json"


class AppException(Exception):
    status_code: ClassVar[int] = 500
    error_type: ClassVar[str] = "internal-error"
    title: ClassVar[str] = "Internal Error"

    def __init__(
        self,
        detail: str,
        *,
        errors: Optional[dict[str, list[str]]] = None,
        **extensions: Any,
    ) -> None:
        self.detail = detail
        self.errors = errors
        self.extensions = {k: v for k, v in extensions.items() if v is not None}
        super().__init__(detail)


class NotFoundException(AppException):
    status_code = 404
    error_type = "not-found"
    title = "Not Found"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} '{entity_id}' does not exist.", entity=entity_type)


class ForbiddenException(AppException):
    status_code = 403
    error_type = "forbidden"
    title = "Forbidden"

    def __init__(self, detail: str = "You do not have permission to perform this action.") -> None:
        super().__init__(detail)


class CompanySuspendedException(ForbiddenException):
    """Writes against a suspended company's attendance are refused."""

    error_type = "company-suspended"
    title = "Company Suspended"

    def __init__(self, company_id: Optional[uuid.UUID] = None) -> None:
        super().__init__("Company is suspended; attendance changes are blocked.")
        if company_id is not None:
            self.extensions["company_id"] = str(company_id)


class ConflictError(AppException):
    """The write collides with a day, request or leave type that already exists."""

    status_code = 409
    error_type = "conflict"
    title = "Conflict"

    def __init__(
        self,
        detail: str,
        *,
        field: Optional[str] = None,
        existing_id: Optional[uuid.UUID] = None,
    ) -> None:
        super().__init__(
            detail,
            errors={field: [detail]} if field else None,
            existing_id=str(existing_id) if existing_id is not None else None,
        )


class NotReadyException(AppException):
    """The day has not reached the step this action needs (e.g. no check-in yet)."""

    status_code = 409
    error_type = "not-ready"
    title = "Not Ready"


class ValidationException(AppException):
    status_code = 422
    error_type = "validation-error"
    title = "Validation Error"

    def __init__(
        self,
        errors: dict[str, list[str]],
        detail: str = "One or more fields failed validation.",
    ) -> None:
        super().__init__(detail, errors=errors)


class InvalidStateException(ValidationException):
    """A review or cancel aimed at a request that is no longer PENDING."""

    error_type = "invalid-state"
    title = "Invalid State"

    def __init__(self, entity_type: str, current_status: str, action: str) -> None:
        message = f"Only pending {entity_type} can be {action} (current: {current_status})."
        super().__init__({"status": [message]}, detail=message)
        self.extensions["current_status"] = current_status


# ── Rendering ───────────────────────────────────────────────────────

def problem_response(
    request: Request,
    *,
    status_code: int,
    error_type: str,
    title: str,
    detail: str,
    errors: Optional[dict[str, list[str]]] = None,
    extensions: Optional[dict[str, Any]] = None,
) -> JSONResponse:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{error_type}",
        "title": title,
        "status": status_code,
        "detail": detail,
        "instance": request.url.path,
        **(extensions or {}),
    }
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body, media_type=PROBLEM_JSON)


async def _handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    return problem_response(
        request,
        status_code=exc.status_code,
        error_type=exc.error_type,
        title=exc.title,
        detail=exc.detail,
        errors=exc.errors,
        extensions=exc.extensions,
    )


def _field_name(loc: tuple[Any, ...]) -> str:
    # Drop the "body" / "query" / "path" source prefix
    parts = loc[1:] if len(loc) > 1 else loc
    return ".".join(str(p) for p in parts) or "unknown"


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        errors.setdefault(_field_name(tuple(err.get("loc", ()))), []).append(
            err.get("msg", "Invalid value"),
        )
    return problem_response(
        request,
        status_code=422,
        error_type=ValidationException.error_type,
        title=ValidationException.title,
        detail="Request validation failed.",
        errors=errors,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, _handle_app_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_request_validation)  # type: ignore[arg-type]
