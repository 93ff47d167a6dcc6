"""CSV import endpoints: server-side path import and multipart upload."""

from __future__ import annotations

import logging
import os
from typing import Callable

import psycopg2
from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile

from .. import db
from ..auth import require_tier
from ..importer import FacilityImportError, ImportResult, import_uploaded_bytes, run_import
from ..importer.postgres_store import PostgresStore
from ..importer.store import ImportStore
from ..models import ImportCSVRequest, ImportResponse

logger = logging.getLogger(__name__)

router = APIRouter()

IMPORT_ERROR_MESSAGE = "An error occurred while importing the CSV file"


def _with_store(request: Request, fn: Callable[[ImportStore], ImportResult]) -> ImportResult:
    """Run fn against PostgreSQL when available, else the app's memory store."""
    if not db.is_available():
        return fn(request.app.state.memory_store)
    try:
        with db.get_conn() as conn:
            return fn(PostgresStore(conn))
    except (psycopg2.Error, RuntimeError) as exc:
        raise FacilityImportError(f"Database error: {exc}") from exc


def _respond(result: ImportResult) -> dict:
    return {
        "success": True,
        "message": result.message(),
        "data": result.to_dict(),
    }


def _import_failed(exc: FacilityImportError) -> HTTPException:
    logger.exception("Error importing CSV file")
    return HTTPException(
        status_code=500,
        detail={"message": IMPORT_ERROR_MESSAGE, "errors": [str(exc)]},
    )


# ---------------------------------------------------------------------------
# POST /api/csvimport/import: import a file already on the server
# ---------------------------------------------------------------------------


@router.post(
    "/api/csvimport/import",
    response_model=ImportResponse,
    dependencies=[Depends(require_tier("admin"))],
)
async def import_csv(request: Request, body: ImportCSVRequest):
    """Import health facilities from a CSV path on the server. Requires admin tier."""
    path = body.csv_file_path.strip()
    if not path or not os.path.isfile(path):
        raise HTTPException(status_code=400, detail="CSV file path is invalid or file does not exist")

    try:
        result = _with_store(
            request,
            lambda store: run_import(path, store, update_existing=body.update_existing),
        )
    except FacilityImportError as exc:
        raise _import_failed(exc) from exc

    return _respond(result)


# ---------------------------------------------------------------------------
# POST /api/csvimport/upload: import an uploaded file
# ---------------------------------------------------------------------------


@router.post(
    "/api/csvimport/upload",
    response_model=ImportResponse,
    dependencies=[Depends(require_tier("admin"))],
)
async def upload_csv(
    request: Request,
    file: UploadFile | None = File(None),
    update_existing: bool = Query(False, description="Overwrite existing facilities instead of skipping"),
):
    """Import health facilities from an uploaded CSV file. Requires admin tier."""
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="No file uploaded")

    if not (file.filename or "").lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="File must be a CSV file")

    try:
        result = _with_store(
            request,
            lambda store: import_uploaded_bytes(content, store, update_existing=update_existing),
        )
    except FacilityImportError as exc:
        raise _import_failed(exc) from exc

    return _respond(result)
