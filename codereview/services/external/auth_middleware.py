"""
Authentication dependency for the FastAPI application.

Bearer tokens resolve to a stable user id:
- Development tokens (``dev_test_token_<user_id>``) outside production
- HS256 JWTs signed with AUTH_JWT_SECRET, using the ``sub`` claim
- Any other token maps to a fixed development user when neither applies
  and the service is not running in production
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from jose.constants import ALGORITHMS

from codereview.infrastructure.config.settings import settings

# Configure logging
logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(
    scheme_name="Bearer Authentication",
    description="Enter your bearer token",
    auto_error=True,
)

# Development token prefix for easier identification - only used in development
DEV_TOKEN_PREFIX = "dev_test_token_"
DEFAULT_DEV_USER = "testuser123"


@dataclass(frozen=True)
class CurrentUser:
    user_id: str


def _unauthorized(detail: str = "Invalid authentication credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_user_id(token: str, signing_key: str) -> Optional[str]:
    """Validate an HS256 token and return its subject, or None if invalid."""
    try:
        payload = jwt.decode(
            token,
            signing_key,
            algorithms=[ALGORITHMS.HS256],
            options={"verify_aud": False},
        )
    except JWTError as e:
        logger.warning(f"JWT validation error: {str(e)}")
        return None
    subject = payload.get("sub")
    return str(subject) if subject else None


def resolve_user_id(token: str) -> str:
    """
    Resolve a bearer token to a user id.

    Raises:
        HTTPException: 401 if the token cannot be resolved
    """
    if not token:
        logger.warning("Authentication failed: Empty token")
        raise _unauthorized()

    if token.startswith(DEV_TOKEN_PREFIX) and not settings.is_production:
        user_id = token[len(DEV_TOKEN_PREFIX):] or DEFAULT_DEV_USER
        logger.info(f"Development token used with user_id: {user_id}")
        return user_id

    if settings.auth_jwt_secret:
        user_id = decode_user_id(token, settings.auth_jwt_secret)
        if not user_id:
            raise _unauthorized()
        return user_id

    if settings.is_production:
        logger.error("Authentication failed: no token validation configured in production")
        raise _unauthorized()

    logger.info("Using default development user since no token validation is configured")
    return DEFAULT_DEV_USER


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """
    Dependency to get the current authenticated user.

    The user id is also stored on request.state for the rate limiter.
    """
    user_id = resolve_user_id(credentials.credentials)
    request.state.user_id = user_id
    return CurrentUser(user_id=user_id)
