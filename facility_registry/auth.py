"""
Health Facility Registry — API Key Authentication

Provides:
    - API key validation via X-API-Key header (bcrypt-hashed keys in PostgreSQL)
    - Tier-based access control (public, registry_read, registry_write, admin)
    - In-memory key cache (5 min TTL) to avoid bcrypt on every request

Key format: hfr_{env}_{32 alphanumeric}
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import bcrypt
import psycopg2
from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import RequestResponseEndpoint

from . import db
from .db import extras

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Auth context: attached to request.state.auth
# ---------------------------------------------------------------------------

TIER_HIERARCHY = {
    "public": 0,
    "registry_read": 1,
    "registry_write": 2,
    "admin": 3,
}


@dataclass
class AuthContext:
    """Resolved authentication context for a request."""

    tier: str = "public"
    actor_id: str = "anonymous"
    actor_type: str = "anonymous"
    key_id: str | None = None


ANONYMOUS = AuthContext()

# ---------------------------------------------------------------------------
# Key cache: avoids bcrypt verification on every request
# ---------------------------------------------------------------------------

_KEY_CACHE: dict[str, tuple[AuthContext, float]] = {}
_CACHE_TTL = 300  # 5 minutes


def _cache_get(api_key: str) -> AuthContext | None:
    """Return cached AuthContext if still valid, else None."""
    entry = _KEY_CACHE.get(api_key)
    if entry is None:
        return None
    ctx, cached_at = entry
    if time.time() - cached_at > _CACHE_TTL:
        del _KEY_CACHE[api_key]
        return None
    return ctx


def _cache_set(api_key: str, ctx: AuthContext) -> None:
    _KEY_CACHE[api_key] = (ctx, time.time())


def clear_cache() -> None:
    """Clear the entire key cache (useful after key revocation)."""
    _KEY_CACHE.clear()


def hash_key(api_key: str) -> str:
    """bcrypt hash for storing a newly issued key in api_keys.key_hash."""
    return bcrypt.hashpw(api_key.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


# ---------------------------------------------------------------------------
# Key validation
# ---------------------------------------------------------------------------


def _validate_key(api_key: str) -> AuthContext | None:
    """
    Validate an API key against the database.

    Returns AuthContext on success, None if key is invalid/expired/inactive.
    """
    if not db.is_available():
        logger.warning("Auth: DB unavailable, cannot validate API key")
        return None

    prefix = api_key[:16]

    try:
        with db.get_conn() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(
                    """
                    SELECT id, key_hash, tier, expires_at
                    FROM api_keys
                    WHERE key_prefix = %s AND is_active = true
                    """,
                    (prefix,),
                )
                rows = cur.fetchall()

                key_bytes = api_key.encode("utf-8")
                for row in rows:
                    if not bcrypt.checkpw(key_bytes, row["key_hash"].encode("utf-8")):
                        continue
                    if row["expires_at"] is not None and row["expires_at"] < datetime.now(timezone.utc):
                        logger.info("Auth: Key %s... expired", prefix[:8])
                        return None

                    cur.execute(
                        "UPDATE api_keys SET last_used_at = now() WHERE id = %s",
                        (row["id"],),
                    )
                    return AuthContext(
                        tier=row["tier"],
                        actor_id=f"apikey:{row['id']}",
                        actor_type="api_user",
                        key_id=str(row["id"]),
                    )
    except (psycopg2.Error, ValueError) as e:
        logger.error("Auth: Key validation error: %s", e)

    return None


# ---------------------------------------------------------------------------
# FastAPI middleware
# ---------------------------------------------------------------------------


async def auth_middleware(request: Request, call_next: RequestResponseEndpoint) -> Response:
    """
    Resolve the caller's identity from X-API-Key header.

    - No header / empty header -> public (anonymous) tier
    - Valid key -> authenticated tier
    - Invalid key -> 401
    """
    api_key = request.headers.get("X-API-Key", "").strip()

    if not api_key:
        request.state.auth = ANONYMOUS
        return await call_next(request)

    ctx = _cache_get(api_key)
    if ctx is not None:
        request.state.auth = ctx
        return await call_next(request)

    ctx = _validate_key(api_key)
    if ctx is None:
        return JSONResponse(
            status_code=401,
            content={"detail": "Invalid or expired API key"},
            headers={"WWW-Authenticate": "ApiKey"},
        )

    _cache_set(api_key, ctx)
    request.state.auth = ctx
    return await call_next(request)


# ---------------------------------------------------------------------------
# Tier-checking dependency
# ---------------------------------------------------------------------------


def require_tier(min_tier: str) -> Callable:
    """
    FastAPI dependency that checks the caller meets the minimum tier.

    Usage:
        @router.post("/api/endpoint", dependencies=[Depends(require_tier("admin"))])
    """
    min_level = TIER_HIERARCHY.get(min_tier, 0)

    async def _check(request: Request):
        auth: AuthContext = getattr(request.state, "auth", ANONYMOUS)
        caller_level = TIER_HIERARCHY.get(auth.tier, 0)
        if caller_level < min_level:
            if auth.actor_type == "anonymous":
                raise HTTPException(
                    status_code=401,
                    detail="Authentication required. Provide an API key via the X-API-Key header.",
                )
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient permissions. Required tier: {min_tier}, your tier: {auth.tier}",
            )

    return _check
