"""Health check endpoint."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

import psycopg2
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

from .. import db
from ..helpers import iso

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/health")
async def health(request: Request):
    """Health check — reports storage mode, facility count, version, DB latency. Always open."""
    mode = "database" if db.is_available() else "memory"
    count = 0
    db_ok = False
    db_latency_ms: float | None = None

    if db.is_available():
        try:
            t0 = time.monotonic()
            with db.get_conn() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT count(*) FROM health_facilities")
                    count = cur.fetchone()[0]
            db_latency_ms = round((time.monotonic() - t0) * 1000, 1)
            db_ok = True
        except psycopg2.Error as e:
            logger.warning("Health: database check failed: %s", e)
            mode = "memory"
            count = request.app.state.memory_store.facility_count()
    else:
        count = request.app.state.memory_store.facility_count()

    server_started_at = request.app.state.server_started_at
    uptime_seconds = round((datetime.now(timezone.utc) - server_started_at).total_seconds())

    overall_status = "healthy" if db_ok else "degraded"
    http_status = 200 if db_ok else 503

    return JSONResponse(
        status_code=http_status,
        content={
            "status": overall_status,
            "mode": mode,
            "facility_count": count,
            "version": request.app.version,
            "database_connected": db_ok,
            "started_at": iso(server_started_at),
            "uptime_seconds": uptime_seconds,
            "checks": {
                "database": {
                    "status": "up" if db_ok else "down",
                    "latency_ms": db_latency_ms,
                },
            },
        },
    )
