"""
Auth utilities for the CareerMentor API.

Validates Supabase-issued JWTs (HS256, audience "authenticated") and
extracts the caller's identity from the Authorization header.
"""
from dataclasses import dataclass
from typing import Optional
import logging

import jwt
from fastapi import Request

from careermentor.core.config import settings
from careermentor.core.errors import StoreWriteError, UnauthorizedError
from careermentor.features.entitlements.service import get_or_create_profile

logger = logging.getLogger(__name__)

JWT_ALGORITHMS = ["HS256"]


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity taken from a verified bearer token."""
    user_id: str
    email: Optional[str] = None


def verify_supabase_jwt(token: str, secret: Optional[str] = None, audience: Optional[str] = None) -> AuthenticatedUser:
    """
    Verify a Supabase JWT and extract the user identity.

    Args:
        token: JWT from Authorization header (Bearer {token})
        secret: Override for SUPABASE_JWT_SECRET
        audience: Override for SUPABASE_JWT_AUDIENCE

    Returns:
        AuthenticatedUser built from the 'sub' and 'email' claims

    Raises:
        UnauthorizedError: Invalid, expired or unverifiable token
    """
    secret = secret or settings.SUPABASE_JWT_SECRET
    if not secret:
        raise UnauthorizedError("Authentication is not configured")

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=JWT_ALGORITHMS,
            audience=audience or settings.SUPABASE_JWT_AUDIENCE,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise UnauthorizedError("Token expired") from e
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthorizedError("Invalid token") from e

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("No 'sub' claim in token")
    return AuthenticatedUser(user_id=user_id, email=payload.get("email"))


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise UnauthorizedError("Missing bearer token")
    token = auth_header[7:].strip()
    if not token:
        raise UnauthorizedError("Missing bearer token")
    return token


async def get_current_user(request: Request) -> AuthenticatedUser:
    """
    FastAPI dependency: the authenticated caller.

    After successful auth, the user's default entitlement record is created
    if this is their first request.

    Raises:
        UnauthorizedError: Missing or invalid bearer token
    """
    try:
        user = verify_supabase_jwt(_bearer_token(request))
    except UnauthorizedError as e:
        logger.warning("auth.rejected", extra={"error_code": e.code, "path": request.url.path})
        raise

    catalog = getattr(request.app.state, "plan_catalog", None)
    free_credits = catalog.free_credits if catalog else settings.FREE_ANALYSIS_CREDITS
    try:
        get_or_create_profile(user.user_id, free_credits=free_credits)
    except StoreWriteError as e:
        # Don't block auth if the upsert fails; entitlement reads fall back to the free default
        logger.warning(f"Failed to upsert profile for {user.user_id}: {e}")

    return user
