"""
Rate limiting for the FastAPI application using slowapi.

Creating and starting analyses fan out to the evaluator and are limited
per user; reads share a more permissive limit.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from codereview.infrastructure.config.settings import settings

# Configure logging
logger = logging.getLogger(__name__)

# Rate limit settings
DEFAULT_RATE_LIMIT = "60/minute" if settings.is_production else "200/minute"
ANALYSIS_RATE_LIMIT = "5/minute" if settings.is_production else "20/minute"
READ_RATE_LIMIT = "30/minute" if settings.is_production else "120/minute"


def get_user_identifier(request: Request) -> str:
    """
    Get a unique identifier for the user making the request.

    In order of preference:
    1. User ID from authentication
    2. Client IP address (fallback)
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_user_identifier,
    default_limits=[DEFAULT_RATE_LIMIT],
    strategy="fixed-window",
    enabled=settings.rate_limit_enabled,
)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded exceptions"""
    logger.warning(f"Rate limit exceeded: {get_user_identifier(request)} - {request.url.path}")
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded. Please try again later.",
            "type": "rate_limit_exceeded",
        },
    )


def configure_rate_limiter(app) -> None:
    """
    Configure the rate limiter for the FastAPI application.

    Args:
        app: The FastAPI application instance
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    logger.info("Rate limiter configured successfully")
