"""
Platform-admin authentication for billing operations.

Supports hybrid authentication:
- Clerk JWT (preferred): Bearer token whose claims mark a platform admin
- Legacy X-Admin-Key: Shared secret (deprecated, feature-flagged)

Auth modes (ADMIN_AUTH_MODE):
- "clerk": Only Clerk JWT allowed (production default)
- "legacy": Only X-Admin-Key allowed (testing/migration)
- "hybrid": Both allowed (default for rollout)

In prod (ENVIRONMENT=prod) legacy keys are blocked unless the mode is
explicitly "legacy". Every admin mutation is audited with the actor identity.
"""
import hashlib
import hmac
import logging
import os
from dataclasses import dataclass
from typing import Optional, Literal

import jwt
from fastapi import Request

from learnstudio.core.config import settings
from learnstudio.core.errors import AuthorizationError

logger = logging.getLogger("learnstudio.admin_auth")


@dataclass
class AdminActor:
    """Represents an authenticated platform admin."""
    actor_type: Literal["clerk", "legacy_key"]
    actor_id: str  # Clerk user ID or "legacy:<hash>"
    actor_email: Optional[str] = None
    actor_display: Optional[str] = None
    auth_mechanism: Literal["clerk_jwt", "x_admin_key"] = "clerk_jwt"


def get_admin_api_key() -> Optional[str]:
    """Get admin API key for legacy auth.
    Prefer ADMIN_API_KEY env var; fall back to settings.ADMIN_KEY.
    """
    env_key = os.getenv("ADMIN_API_KEY")
    if env_key:
        return env_key
    return settings.ADMIN_KEY


def verify_legacy_key(request: Request) -> Optional[AdminActor]:
    """
    Verify legacy X-Admin-Key header.
    Returns AdminActor if valid, None if not present/invalid.
    """
    expected_key = get_admin_api_key()
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key.encode(), expected_key.encode()):
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(
        actor_type="legacy_key",
        actor_id=f"legacy:{key_hash}",
        actor_display="Legacy Admin Key",
        auth_mechanism="x_admin_key",
    )


def verify_clerk_jwt(request: Request) -> Optional[AdminActor]:
    """
    Verify Clerk JWT from Authorization header.
    Returns AdminActor if valid and the user is a platform admin, None otherwise.
    """
    from learnstudio.core.clerk_auth import verify_jwt_token, is_platform_admin

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:].strip()
    if not token:
        return None

    try:
        claims = verify_jwt_token(token)
    except jwt.PyJWTError as exc:
        logger.info(f"[admin_auth] rejected bearer token: {exc}")
        return None

    if not is_platform_admin(claims):
        return None

    return AdminActor(
        actor_type="clerk",
        actor_id=claims.get("sub", "unknown"),
        actor_email=claims.get("email"),
        actor_display=claims.get("name") or claims.get("email"),
        auth_mechanism="clerk_jwt",
    )


def get_admin_actor(request: Request) -> Optional[AdminActor]:
    """
    Attempt to authenticate admin from request.
    Returns AdminActor or None (does not raise).

    Order of preference:
    1. Clerk JWT (if ADMIN_AUTH_MODE in {"clerk", "hybrid"})
    2. Legacy key (if ADMIN_AUTH_MODE in {"legacy", "hybrid"} AND env allows)
    """
    mode = settings.ADMIN_AUTH_MODE.lower()
    env = settings.ENVIRONMENT.lower()

    if mode in {"clerk", "hybrid"}:
        actor = verify_clerk_jwt(request)
        if actor:
            return actor

    if mode in {"legacy", "hybrid"}:
        if env == "prod" and mode != "legacy":
            return None
        return verify_legacy_key(request)

    return None


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: require platform-admin authentication.
    Raises AuthorizationError (403) if authentication fails.

    Usage:
        @router.post("/admin/endpoint")
        def admin_endpoint(actor: AdminActor = Depends(require_admin)):
            ...
    """
    actor = get_admin_actor(request)
    if actor:
        return actor

    has_clerk = bool(settings.CLERK_SECRET_KEY or settings.CLERK_JWKS_URL)
    has_legacy = bool(get_admin_api_key())
    if not has_clerk and not has_legacy:
        logger.error("[admin_auth] admin authentication not configured (set CLERK_SECRET_KEY or ADMIN_KEY)")

    raise AuthorizationError("Unauthorized", code="forbidden")
