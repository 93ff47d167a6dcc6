"""
Facility reconciler — the main import loop.

Each record either becomes a staged insert/update or a `Skipped` entry
with a human-readable reason; one bad row never stops the batch. Only
storage failures while flushing abort the import.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from .errors import FacilityImportError, classify_storage_error
from .fields import (
    normalize_in_charge_number,
    normalize_text,
    parse_date,
    parse_latitude,
    parse_longitude,
)
from .lookups import ResolvedLookups, lookup_key
from .records import FacilityRecord
from .store import FacilityValues, ImportStore

logger = logging.getLogger(__name__)


def _batch_size_from_env() -> int:
    return max(1, int(os.environ.get("HFR_IMPORT_BATCH_SIZE", "100")))


BATCH_SIZE = _batch_size_from_env()


@dataclass(frozen=True)
class Skipped:
    """A rejected record: who it was and why."""

    identifier: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"identifier": self.identifier, "reason": self.reason}


@dataclass(frozen=True)
class Accepted:
    values: FacilityValues


@dataclass
class FacilityOutcome:
    inserted: int = 0
    updated: int = 0
    skipped: list[Skipped] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Per-record resolution (pure)
# ---------------------------------------------------------------------------


def resolve_record(record: FacilityRecord, lookups: ResolvedLookups) -> Accepted | Skipped:
    """
    Resolve a record's foreign keys and transform its fields.

    Does not look at storage or at other records: duplicate and
    already-exists checks belong to the caller.
    """
    fid = record.external_facility_id

    def skip(reason: str) -> Skipped:
        return Skipped(identifier=fid, reason=reason)

    state, region, district = record.state, record.region, record.district
    if not state:
        return skip(f"State is empty for FacilityId '{fid}'")
    if state not in lookups.states:
        return skip(f"State '{state}' was not found in registered States lookup table for FacilityId '{fid}'")
    if not region:
        return skip(f"Region is empty for FacilityId '{fid}'")
    if not district:
        return skip(f"District is empty for FacilityId '{fid}'")
    if lookup_key(state, region) not in lookups.regions:
        return skip(f"Region '{region}' in State '{state}' was not found in registered Regions lookup table")
    district_id = lookups.districts.get(lookup_key(state, region, district))
    if district_id is None:
        return skip(f"District '{district}' in Region '{region}' was not found in registered Districts lookup table")

    flat_ids: dict[str, int] = {}
    for kind, label, table in (
        ("facility_type", "HealthFacilityType", "FacilityTypes"),
        ("ownership", "Ownership", "Ownerships"),
        ("operational_status", "OperationalStatus", "OperationalStatuses"),
    ):
        value = getattr(record, kind)
        if not value:
            return skip(f"{label} is empty for FacilityId '{fid}'")
        lookup_id = lookups.flat[kind].get(value)
        if lookup_id is None:
            return skip(
                f"{label} '{value}' was not found in registered {table} lookup table for FacilityId '{fid}'"
            )
        flat_ids[kind] = lookup_id

    return Accepted(
        FacilityValues(
            external_facility_id=fid,
            name=record.facility_name,
            latitude=parse_latitude(record.latitude, fid),
            longitude=parse_longitude(record.longitude, fid),
            district_id=district_id,
            facility_type_id=flat_ids["facility_type"],
            ownership_id=flat_ids["ownership"],
            operational_status_id=flat_ids["operational_status"],
            hc_partners=normalize_text(record.hc_partners),
            hc_project_end_date=parse_date(record.hc_project_end_date),
            nutrition_cluster_partners=normalize_text(record.nutrition_cluster_partners),
            damal_caafimaad_partner=normalize_text(record.damal_caafimaad_partner),
            damal_caafimaad_project_end_date=parse_date(record.damal_caafimaad_project_end_date),
            better_life_project_partner=normalize_text(record.better_life_project_partner),
            better_life_project_end_date=parse_date(record.better_life_project_end_date),
            caafimaad_plus_partner=normalize_text(record.caafimaad_plus_partner),
            caafimaad_plus_project_end_date=parse_date(record.caafimaad_plus_project_end_date),
            facility_in_charge_name=normalize_text(record.facility_in_charge_name),
            facility_in_charge_number=normalize_in_charge_number(record.facility_in_charge_number),
        )
    )


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------


def _flush(store: ImportStore) -> None:
    try:
        store.flush()
    except FacilityImportError:
        raise
    except Exception as exc:
        raise classify_storage_error(exc) from exc


def reconcile_facilities(
    records: Iterable[FacilityRecord],
    lookups: ResolvedLookups,
    store: ImportStore,
    *,
    update_existing: bool = False,
    batch_size: int = BATCH_SIZE,
    clock: Callable[[], datetime] = _utcnow,
) -> FacilityOutcome:
    """
    Insert (or, with update_existing, overwrite) one facility per distinct
    external id, flushing every `batch_size` staged rows and at the end.

    Batches flushed before a failing one stay committed.
    """
    outcome = FacilityOutcome()
    processed: set[str] = set()
    staged = 0

    def skip(entry: Skipped, *, quiet: bool = False) -> None:
        outcome.skipped.append(entry)
        log = logger.info if quiet else logger.warning
        log("Skipping %s: %s", entry.identifier, entry.reason)

    try:
        for record in records:
            fid = record.external_facility_id
            if not fid:
                skip(Skipped(f"Row {record.row_number}", "FacilityId is empty"))
                continue

            if fid in processed:
                skip(Skipped(fid, f"Duplicate FacilityId '{fid}' found in CSV (already processed in this import session)"))
                continue

            existing_id = store.find_facility(fid)
            if existing_id is not None and not update_existing:
                skip(Skipped(fid, f"FacilityId '{fid}' already exists in database"), quiet=True)
                continue

            result = resolve_record(record, lookups)
            if isinstance(result, Skipped):
                skip(result)
                continue

            now = clock()
            if existing_id is None:
                store.add_facility(result.values, now)
                outcome.inserted += 1
            else:
                store.update_facility(existing_id, result.values, now)
                outcome.updated += 1
            processed.add(fid)

            staged += 1
            if staged % batch_size == 0:
                _flush(store)
                logger.info("Flushed %d facility rows", staged)

        _flush(store)
    except FacilityImportError:
        raise
    except Exception as exc:
        raise FacilityImportError(f"Error creating health facilities: {exc}") from exc

    return outcome
