"""Rate limiting configuration using SlowAPI."""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from threadbot.config import get_config

# Create limiter with IP-based key function
limiter = Limiter(key_func=get_remote_address)


def verification_request_limit() -> str:
    """Limit string for verification code requests, read from config.yml."""
    return get_config().verification.request_rate_limit


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Custom handler for rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests. Please try again later."},
    )
