"""
Health Facility Registry — API Server

FastAPI application exposing the facility CSV import.

Dual-mode data layer:
  - DATABASE mode: imports are written to PostgreSQL (when reachable)
  - MEMORY mode: imports land in a process-local MemoryStore (fallback)

Usage:
    uvicorn facility_registry.app:app --reload
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

import psycopg2
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__, db
from .auth import auth_middleware
from .importer.store import MemoryStore
from .routes import health, imports

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

INIT_SCHEMA = os.environ.get("HFR_INIT_SCHEMA", "0") == "1"

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Health Facility Registry API",
    version=__version__,
    description="CSV import API for the health facility registry",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.middleware("http")(auth_middleware)

app.include_router(imports.router)
app.include_router(health.router)

app.state.memory_store = MemoryStore()
app.state.server_started_at = datetime.now(timezone.utc)


@app.on_event("startup")
async def startup():
    app.state.server_started_at = datetime.now(timezone.utc)
    if db.init_pool():
        logger.info("Running in DATABASE mode")
        if INIT_SCHEMA:
            _apply_schema()
    else:
        logger.info("Running in MEMORY mode")


def _apply_schema():
    try:
        db.init_schema()
    except psycopg2.Error as e:
        logger.warning("Could not apply schema: %s", e)


@app.on_event("shutdown")
async def shutdown():
    db.close_pool()
