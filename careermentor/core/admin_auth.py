"""
Admin authentication for operator endpoints.

Admins authenticate with a shared secret in the X-Admin-Key header.
The expected key comes from ADMIN_API_KEY (env) or settings.ADMIN_KEY.
"""
import os
import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional
from fastapi import Request, HTTPException
from careermentor.core.config import settings


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_id: str  # "admin_key:<hash>"
    actor_display: Optional[str] = None
    auth_mechanism: str = "x_admin_key"


def get_admin_api_key() -> Optional[str]:
    """Get admin API key.
    Prefer ADMIN_API_KEY env var; fall back to settings.ADMIN_KEY.
    """
    env_key = os.getenv("ADMIN_API_KEY")
    if env_key:
        return env_key
    return settings.ADMIN_KEY


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    """
    Verify the X-Admin-Key header.
    Returns AdminActor if valid, None if not present/invalid.
    """
    expected_key = get_admin_api_key()
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected_key):
        return None

    # Stable actor identity without storing the key
    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(
        actor_id=f"admin_key:{key_hash}",
        actor_display="Admin Key",
    )


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require admin authentication.
    Raises HTTPException if authentication fails.
    """
    actor = verify_admin_key(request)
    if actor:
        return actor

    if not get_admin_api_key():
        raise HTTPException(
            status_code=503,
            detail="Admin authentication not configured; set ADMIN_KEY",
        )

    raise HTTPException(
        status_code=401,
        detail="Unauthorized: invalid or missing admin credentials",
    )
