"""mbapp_shared.auth — Bearer JWT authentication and tenant resolution.

Reads ``Authorization: Bearer <token>``, verifies the HS256 JWT with the
shared secret and expected issuer, and resolves the tenant from the
``x-tenant-id`` header.

Requires environment variables:
    JWT_SECRET   — HMAC secret used to sign session tokens
    JWT_ISSUER   — expected ``iss`` claim (default: mbapp)

Optional:
    AUTH_DISABLED — "1" skips JWT verification (local development only);
                    the tenant header is still required.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Tuple

import jwt

from mbapp_shared import config
from mbapp_shared.http_utils import _error

logger = logging.getLogger(__name__)


def _header(event: Dict[str, Any], name: str) -> str:
    headers = event.get("headers") or {}
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted and value:
            return str(value)
    return ""


def _extract_token(event: Dict[str, Any]) -> Optional[str]:
    """Extract the bearer token from the Authorization header."""
    raw = _header(event, "authorization").strip()
    if not raw.lower().startswith("bearer "):
        return None
    token = raw[len("bearer "):].strip()
    return token or None


def _tenant_id(event: Dict[str, Any]) -> Optional[str]:
    """Resolve the tenant from the x-tenant-id header (any casing)."""
    tenant = _header(event, "x-tenant-id").strip()
    return tenant or None


def _verify_token(token: str) -> Dict[str, Any]:
    """Verify an HS256 session JWT. Returns decoded claims dict."""
    if not config.JWT_SECRET:
        raise RuntimeError("JWT_SECRET not set")
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=["HS256"],
            issuer=config.JWT_ISSUER,
            options={"verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise ValueError("Token has expired. Please sign in again.")
    except jwt.InvalidIssuerError:
        raise ValueError("Token issuer mismatch.")
    except jwt.PyJWTError as exc:
        raise ValueError(f"Token validation failed: {exc}") from exc


def _authenticate(
    event: Dict[str, Any],
    *,
    error_fn: Optional[Callable[..., Dict[str, Any]]] = None,
) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """Authenticate the request and resolve its tenant.

    Returns (auth_context, None) on success or (None, error_response) on
    failure. The auth context carries ``user_id``, ``tenant_id``, ``roles``
    and the raw ``claims``.
    """
    if error_fn is None:
        error_fn = _error

    tenant_id = _tenant_id(event)

    if config.AUTH_DISABLED:
        if not tenant_id:
            return None, error_fn(400, "x-tenant-id header required")
        return {"user_id": "local", "tenant_id": tenant_id, "roles": [], "claims": {}}, None

    token = _extract_token(event)
    if not token:
        return None, error_fn(401, "Authentication required.")

    try:
        claims = _verify_token(token)
    except ValueError as exc:
        return None, error_fn(401, str(exc))
    except RuntimeError as exc:
        logger.error("auth misconfigured: %s", exc)
        return None, error_fn(500, "Server auth not configured.")

    if not tenant_id:
        return None, error_fn(400, "x-tenant-id header required")

    allowed_tenants = claims.get("tenants")
    if isinstance(allowed_tenants, list) and allowed_tenants and tenant_id not in allowed_tenants:
        return None, error_fn(403, f"Tenant not permitted: {tenant_id}")

    roles = claims.get("roles") if isinstance(claims.get("roles"), list) else []
    return {
        "user_id": str(claims.get("sub") or ""),
        "tenant_id": tenant_id,
        "roles": roles,
        "claims": claims,
    }, None
