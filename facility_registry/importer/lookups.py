"""
Lookup cache builder and reconciler.

Phase 1 (`build_lookup_caches`) walks the parsed records once and stages
every distinct State, Region, District, FacilityType, Ownership and
OperationalStatus value. Phase 2 (`reconcile_lookups`) resolves each
staged value to a persisted id, inserting the ones storage does not have
yet, strictly parents-first with a commit between levels.

Keys are the trimmed, case-sensitive source text, with ancestry joined by
"|" ("Banadir|Mogadishu|Hodan"). No case-folding or synonym mapping is
done: two spellings are two lookup rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from .errors import FacilityImportError, LookupPersistenceError, lookup_too_long
from .records import FacilityRecord
from .store import FLAT_LOOKUPS, LOOKUP_NAME_LIMITS, ImportStore

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "|"

_FLAT_LABELS = {
    "facility_type": ("FacilityType", "FacilityTypes"),
    "ownership": ("Ownership", "Ownerships"),
    "operational_status": ("OperationalStatus", "OperationalStatuses"),
}


def lookup_key(*parts: str) -> str:
    """Composite cache key: ancestry joined by '|'."""
    return KEY_SEPARATOR.join(parts)


def _flat_value(record: FacilityRecord, kind: str) -> str:
    return getattr(record, kind)


# ---------------------------------------------------------------------------
# Phase 1: staging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StagedLookups:
    """Distinct lookup values seen in a file, in first-seen order."""

    states: dict[str, str] = field(default_factory=dict)
    regions: dict[str, tuple[str, str]] = field(default_factory=dict)
    districts: dict[str, tuple[str, str, str]] = field(default_factory=dict)
    flat: dict[str, dict[str, str]] = field(default_factory=lambda: {k: {} for k in FLAT_LOOKUPS})


def build_lookup_caches(records: Iterable[FacilityRecord]) -> StagedLookups:
    staged = StagedLookups()

    for record in records:
        state, region, district = record.state, record.region, record.district

        if state:
            staged.states.setdefault(state, state)
        if state and region:
            staged.regions.setdefault(lookup_key(state, region), (state, region))
        if state and region and district:
            staged.districts.setdefault(lookup_key(state, region, district), (state, region, district))

        for kind in FLAT_LOOKUPS:
            value = _flat_value(record, kind)
            if value:
                staged.flat[kind].setdefault(value, value)

    logger.info(
        "Staged lookups: %d states, %d regions, %d districts, %s",
        len(staged.states),
        len(staged.regions),
        len(staged.districts),
        ", ".join(f"{len(staged.flat[k])} {k}" for k in FLAT_LOOKUPS),
    )
    return staged


# ---------------------------------------------------------------------------
# Phase 2: reconciliation against storage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResolvedLookups:
    """Persisted ids for every staged lookup key that could be resolved."""

    states: dict[str, int]
    regions: dict[str, int]
    districts: dict[str, int]
    flat: dict[str, dict[str, int]]


def _reconcile_level(
    store: ImportStore,
    *,
    level: str,
    label: str,
    table_label: str,
    entries: Iterable[tuple[str, str, int | None]],
    find: Callable[[int | None, str], int | None],
    insert: Callable[[int | None, str], int],
) -> dict[str, int]:
    """
    Resolve (key, name, parent_id) entries for one level and commit.

    Any storage failure aborts the import as a LookupPersistenceError
    naming the level.
    """
    limit = LOOKUP_NAME_LIMITS[level]
    resolved: dict[str, int] = {}
    created = 0

    try:
        for key, name, parent_id in entries:
            if len(name) > limit:
                raise lookup_too_long(level, label, name, limit)
            lookup_id = find(parent_id, name)
            if lookup_id is None:
                lookup_id = insert(parent_id, name)
                created += 1
            resolved[key] = lookup_id
        store.commit()
    except FacilityImportError:
        raise
    except Exception as exc:
        raise LookupPersistenceError(
            f"Error saving {table_label} to database: {exc}",
            level=level,
        ) from exc

    logger.info(
        "%s: %d resolved (%d created, %d existing)",
        table_label, len(resolved), created, len(resolved) - created,
    )
    return resolved


def reconcile_lookups(staged: StagedLookups, store: ImportStore) -> ResolvedLookups:
    """Persist staged lookups parents-first and return key → id maps."""
    states = _reconcile_level(
        store,
        level="state",
        label="StateCode",
        table_label="States",
        entries=((code, code, None) for code in staged.states),
        find=lambda _parent, code: store.find_state(code),
        insert=lambda _parent, code: store.insert_state(code, code),
    )

    def region_entries():
        for key, (state, region) in staged.regions.items():
            state_id = states.get(state)
            if state_id is None:
                logger.warning(
                    "Skipping region '%s' because parent state '%s' was not found in States lookup table.",
                    region, state,
                )
                continue
            yield key, region, state_id

    regions = _reconcile_level(
        store,
        level="region",
        label="RegionName",
        table_label="Regions",
        entries=region_entries(),
        find=store.find_region,
        insert=store.insert_region,
    )

    def district_entries():
        for key, (state, region, district) in staged.districts.items():
            region_id = regions.get(lookup_key(state, region))
            if region_id is None:
                logger.warning(
                    "Skipping district '%s' because parent region '%s' in state '%s' "
                    "was not found in Regions lookup table.",
                    district, region, state,
                )
                continue
            yield key, district, region_id

    districts = _reconcile_level(
        store,
        level="district",
        label="DistrictName",
        table_label="Districts",
        entries=district_entries(),
        find=store.find_district,
        insert=store.insert_district,
    )

    flat: dict[str, dict[str, int]] = {}
    for kind in FLAT_LOOKUPS:
        label, table_label = _FLAT_LABELS[kind]
        flat[kind] = _reconcile_level(
            store,
            level=kind,
            label=label,
            table_label=table_label,
            entries=((name, name, None) for name in staged.flat[kind]),
            find=lambda _parent, name, kind=kind: store.find_lookup(kind, name),
            insert=lambda _parent, name, kind=kind: store.insert_lookup(kind, name),
        )

    return ResolvedLookups(states=states, regions=regions, districts=districts, flat=flat)
