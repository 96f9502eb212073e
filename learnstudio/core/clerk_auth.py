"""
Clerk JWT verification for platform-admin access.

Handles:
- JWT signature verification (HS256 shared secret or RS256 via JWKS)
- Issuer/audience validation
- Platform-admin role extraction
- Test helper for deterministic token minting (no network)
"""
import json
import time
from typing import Dict, Any, Optional, Callable

import jwt

from learnstudio.core.config import settings


# JWKS override (tests) and cache keyed by issuer/jwks_url
_jwks_provider_override: Optional[Callable[[str, str], Dict[str, Any]]] = None
_jwks_cache: Dict[str, Dict[str, Any]] = {}


def set_jwks_provider_for_tests(provider: Optional[Callable[[str, str], Dict[str, Any]]]) -> None:
    """Set or clear JWKS provider override for deterministic testing (no network)."""
    global _jwks_provider_override
    _jwks_provider_override = provider
    _jwks_cache.clear()


def _default_fetch_jwks(issuer: str, jwks_url: str) -> Dict[str, Any]:
    import urllib.request
    with urllib.request.urlopen(jwks_url, timeout=5) as response:
        return json.loads(response.read())


def get_jwks(issuer: str, jwks_url: Optional[str] = None) -> Dict[str, Any]:
    """Fetch JWKS using override (tests) or default fetcher. Cached per issuer/url."""
    resolved_url = jwks_url or f"{issuer.rstrip('/')}/.well-known/jwks.json"
    cache_key = f"{issuer}|{resolved_url}"

    if cache_key in _jwks_cache:
        return _jwks_cache[cache_key]

    if _jwks_provider_override:
        jwks = _jwks_provider_override(issuer, resolved_url)
    else:
        jwks = _default_fetch_jwks(issuer, resolved_url)

    _jwks_cache[cache_key] = jwks
    return jwks


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """
    Verify a Clerk JWT and return its claims.

    Raises jwt.PyJWTError on an invalid token.
    """
    secret = settings.CLERK_SECRET_KEY
    if secret:
        # Symmetric verification (development/testing)
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True, "verify_aud": False},
        )

    issuer = settings.CLERK_ISSUER
    jwks_url = settings.CLERK_JWKS_URL
    if not issuer and not jwks_url:
        raise jwt.PyJWTError("CLERK_ISSUER or CLERK_JWKS_URL must be configured for RS256 verification")

    jwks = get_jwks(issuer or "https://clerk.test", jwks_url)

    kid = jwt.get_unverified_header(token).get("kid")
    if not kid:
        raise jwt.PyJWTError("Token missing 'kid' in header")

    matching_key = next((key for key in jwks.get("keys", []) if key.get("kid") == kid), None)
    if not matching_key:
        raise jwt.PyJWTError(f"Key ID '{kid}' not found in JWKS")

    from jwt.algorithms import RSAAlgorithm
    public_key = RSAAlgorithm.from_jwk(json.dumps(matching_key))

    return jwt.decode(
        token,
        public_key,
        algorithms=["RS256"],
        audience=settings.CLERK_AUDIENCE,
        issuer=issuer,
        options={"verify_signature": True, "verify_exp": True},
    )


def is_platform_admin(claims: Dict[str, Any]) -> bool:
    """
    Check whether JWT claims belong to a platform administrator.

    Accepts public_metadata.is_platform_admin == True or
    public_metadata.role == "platform_admin". Org-level admin roles do not count:
    an org admin manages one tenant, not platform billing.
    """
    public_metadata = claims.get("public_metadata", {})
    if not isinstance(public_metadata, dict):
        return False
    if public_metadata.get("is_platform_admin") is True:
        return True
    return public_metadata.get("role") == "platform_admin"


def create_test_jwt(
    sub: str = "test_user_123",
    email: Optional[str] = "admin@example.com",
    platform_admin: bool = True,
    exp_minutes: int = 60,
    secret: str = "test-secret-key-for-learnstudio-admin",
) -> str:
    """Mint an HS256 token for tests (pair with settings.CLERK_SECRET_KEY = secret)."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "email": email,
        "iat": now,
        "exp": now + (exp_minutes * 60),
        "public_metadata": {"is_platform_admin": platform_admin},
    }
    return jwt.encode(payload, secret, algorithm="HS256")
