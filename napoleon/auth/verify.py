"""
verify.py
---------
Purpose:
    Bearer-token authentication for the Napoleon API.

Notes:
    - Tokens are Supabase access tokens signed with ES256; signing keys come
      from the project's JWKS endpoint and are cached for JWKS_CACHE_SECONDS.
    - Routes depend on `current_user_id`; tests override `auth_dependency`.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from napoleon.config import settings
from napoleon.infrastructure.observability.logging import get_logger

SUPABASE_AUDIENCE = "authenticated"
JWKS_CACHE_SECONDS = 600

logger = get_logger(__name__)

_jwk_client = PyJWKClient(settings.jwks_url(), cache_keys=True, lifespan=JWKS_CACHE_SECONDS)
_security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_jwt(token: str) -> dict:
    """Decode and validate a Supabase access token; 401 on any failure."""
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
    except (jwt.PyJWKClientError, jwt.InvalidTokenError) as e:
        logger.warning("JWKS signing key lookup failed", error=str(e))
        raise _unauthorized("Invalid authentication token: no usable signing key") from e

    try:
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            audience=SUPABASE_AUDIENCE,
            options={"verify_exp": True, "require": ["exp", "sub"]},
        )
    except jwt.InvalidTokenError as e:
        logger.info("Rejected bearer token", error_type=type(e).__name__)
        raise _unauthorized(f"Invalid authentication token: {e}") from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    return verify_jwt(credentials.credentials)


def current_user_id(claims: dict = Depends(auth_dependency)) -> str:
    user_id = claims.get("sub")
    if not user_id:
        logger.error("No user ID in JWT claims")
        raise _unauthorized("Invalid token: missing user ID")
    return str(user_id)
