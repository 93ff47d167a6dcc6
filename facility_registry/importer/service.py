"""
Import orchestration: parse → stage lookups → reconcile lookups →
reconcile facilities → summary.

Runs synchronously in the caller's thread. There is no cross-import
locking; concurrent imports rely on the schema's unique constraints.
"""

from __future__ import annotations

import csv
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import FacilityImportError
from .facilities import BATCH_SIZE, Skipped, reconcile_facilities
from .lookups import build_lookup_caches, reconcile_lookups
from .records import FacilityRecord, read_csv_file
from .store import ImportStore

logger = logging.getLogger(__name__)

SKIPPED_RESPONSE_LIMIT = 100
SKIPPED_LOG_LIMIT = 10


@dataclass
class ImportResult:
    """Counts of distinct lookup values seen, plus facility outcomes."""

    states_count: int = 0
    regions_count: int = 0
    districts_count: int = 0
    facility_types_count: int = 0
    ownerships_count: int = 0
    operational_statuses_count: int = 0
    inserted_count: int = 0
    updated_count: int = 0
    total_records: int = 0
    skipped_records: list[Skipped] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_records)

    def message(self) -> str:
        text = (
            f"CSV import completed successfully. {self.inserted_count} new facilities imported, "
            f"{self.updated_count} facilities updated"
        )
        if self.skipped_records:
            return f"{text}, {self.skipped_count} records skipped."
        return f"{text}."

    def to_dict(self, skipped_limit: int = SKIPPED_RESPONSE_LIMIT) -> dict[str, Any]:
        return {
            "states": self.states_count,
            "regions": self.regions_count,
            "districts": self.districts_count,
            "facility_types": self.facility_types_count,
            "ownerships": self.ownerships_count,
            "operational_statuses": self.operational_statuses_count,
            "health_facilities": self.inserted_count,
            "updated_facilities": self.updated_count,
            "skipped_count": self.skipped_count,
            "skipped_records": [s.to_dict() for s in self.skipped_records[:skipped_limit]],
        }


def import_records(
    records: list[FacilityRecord],
    store: ImportStore,
    *,
    update_existing: bool = False,
    batch_size: int = BATCH_SIZE,
) -> ImportResult:
    """Run the pipeline over already-parsed records."""
    staged = build_lookup_caches(records)
    resolved = reconcile_lookups(staged, store)
    outcome = reconcile_facilities(
        records,
        resolved,
        store,
        update_existing=update_existing,
        batch_size=batch_size,
    )

    result = ImportResult(
        states_count=len(staged.states),
        regions_count=len(staged.regions),
        districts_count=len(staged.districts),
        facility_types_count=len(staged.flat["facility_type"]),
        ownerships_count=len(staged.flat["ownership"]),
        operational_statuses_count=len(staged.flat["operational_status"]),
        inserted_count=outcome.inserted,
        updated_count=outcome.updated,
        total_records=len(records),
        skipped_records=outcome.skipped,
    )
    _log_summary(result)
    return result


def run_import(
    csv_path: str | Path,
    store: ImportStore,
    *,
    update_existing: bool = False,
    batch_size: int = BATCH_SIZE,
) -> ImportResult:
    """Import a CSV file that already exists on the server."""
    logger.info("Starting CSV import from %s (update_existing=%s)", csv_path, update_existing)
    try:
        records = read_csv_file(csv_path)
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise FacilityImportError(f"Error reading CSV file: {exc}") from exc
    return import_records(records, store, update_existing=update_existing, batch_size=batch_size)


def import_uploaded_bytes(
    content: bytes,
    store: ImportStore,
    *,
    update_existing: bool = False,
    batch_size: int = BATCH_SIZE,
) -> ImportResult:
    """
    Write an uploaded body to a temporary .csv file and import it.

    The temporary file is removed whether the import succeeds or fails.
    """
    temp_path = Path(tempfile.gettempdir()) / f"{uuid.uuid4()}.csv"
    try:
        try:
            temp_path.write_bytes(content)
        except OSError as exc:
            raise FacilityImportError(f"Error saving uploaded file: {exc}") from exc
        return run_import(temp_path, store, update_existing=update_existing, batch_size=batch_size)
    finally:
        if temp_path.exists():
            os.remove(temp_path)


def _log_summary(result: ImportResult) -> None:
    logger.info(
        "CSV import completed: %d total CSV records, %d processed, %d skipped, "
        "%d new facilities inserted, %d updated",
        result.total_records,
        result.total_records - result.skipped_count,
        result.skipped_count,
        result.inserted_count,
        result.updated_count,
    )
    if result.skipped_records:
        logger.warning(
            "Skipped records (%d): %s",
            result.skipped_count,
            "; ".join(f"{s.identifier}: {s.reason}" for s in result.skipped_records[:SKIPPED_LOG_LIMIT]),
        )
        if result.skipped_count > SKIPPED_LOG_LIMIT:
            logger.warning(
                "... and %d more skipped records. Check full logs for details.",
                result.skipped_count - SKIPPED_LOG_LIMIT,
            )
