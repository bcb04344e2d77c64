"""Rate limiting configuration using slowapi.

Provides a module-level Limiter instance imported by the attendance router
for the clock endpoints, and wired into the FastAPI app in main.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Clock endpoints override this with @limiter.limit("N/period").
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["60/minute"],
)

CLOCK_RATE_LIMIT = "20/minute"
