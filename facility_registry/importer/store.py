"""
Persistence contract for the import pipeline, plus an in-memory store.

The pipeline only needs query-by-unique-key and insert for each table, a
commit after each lookup level, and a staged facility batch that is
flushed in one round trip. `PostgresStore` implements this against the
registry schema; `MemoryStore` enforces the same unique keys and column
limits without a database and backs the API when PostgreSQL is down.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema facts shared with schema.sql
# ---------------------------------------------------------------------------

FLAT_LOOKUPS = ("facility_type", "ownership", "operational_status")

LOOKUP_TABLES = {
    "state": "states",
    "region": "regions",
    "district": "districts",
    "facility_type": "facility_types",
    "ownership": "ownerships",
    "operational_status": "operational_statuses",
}

# VARCHAR limits on lookup name columns. states.code is TEXT.
LOOKUP_NAME_LIMITS = {
    "state": 255,
    "region": 100,
    "district": 100,
    "facility_type": 100,
    "ownership": 50,
    "operational_status": 50,
}

FACILITY_COLUMN_LIMITS = {
    "external_facility_id": 50,
    "name": 255,
    "nutrition_cluster_partners": 255,
    "damal_caafimaad_partner": 255,
    "better_life_project_partner": 255,
    "caafimaad_plus_partner": 255,
    "facility_in_charge_name": 255,
    "facility_in_charge_number": 50,
}

# NUMERIC(10, 7): three integer digits.
COORDINATE_MAX = Decimal("999.9999999")


@dataclass(frozen=True)
class FacilityValues:
    """Resolved foreign keys and transformed fields for one facility row."""

    external_facility_id: str
    name: str
    latitude: Decimal | None
    longitude: Decimal | None
    district_id: int
    facility_type_id: int
    ownership_id: int
    operational_status_id: int
    hc_partners: str | None = None
    hc_project_end_date: datetime | None = None
    nutrition_cluster_partners: str | None = None
    damal_caafimaad_partner: str | None = None
    damal_caafimaad_project_end_date: datetime | None = None
    better_life_project_partner: str | None = None
    better_life_project_end_date: datetime | None = None
    caafimaad_plus_partner: str | None = None
    caafimaad_plus_project_end_date: datetime | None = None
    facility_in_charge_name: str | None = None
    facility_in_charge_number: str | None = None

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


FACILITY_COLUMNS = tuple(FacilityValues.__dataclass_fields__)


class ImportStore(Protocol):
    """What the import pipeline needs from persistence."""

    def find_state(self, code: str) -> int | None: ...

    def insert_state(self, code: str, name: str) -> int: ...

    def find_region(self, state_id: int, name: str) -> int | None: ...

    def insert_region(self, state_id: int, name: str) -> int: ...

    def find_district(self, region_id: int, name: str) -> int | None: ...

    def insert_district(self, region_id: int, name: str) -> int: ...

    def find_lookup(self, kind: str, name: str) -> int | None: ...

    def insert_lookup(self, kind: str, name: str) -> int: ...

    def commit(self) -> None: ...

    def find_facility(self, external_facility_id: str) -> int | None: ...

    def add_facility(self, values: FacilityValues, now: datetime) -> None: ...

    def update_facility(self, facility_id: int, values: FacilityValues, now: datetime) -> None: ...

    def flush(self) -> None: ...


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class StorageError(Exception):
    """Constraint violation raised by MemoryStore, shaped like a psycopg2 error."""

    def __init__(self, message: str, pgcode: str):
        super().__init__(message)
        self.pgcode = pgcode
        self.pgerror = message


def _check_length(column: str, value: str | None, limit: int) -> None:
    if value is not None and len(value) > limit:
        raise StorageError(
            f"value too long for type character varying({limit}) (column {column})",
            "22001",
        )


class MemoryStore:
    """
    Dict-backed ImportStore.

    Lookup inserts are visible immediately (ids are needed by the next
    level). Facility writes are staged and applied atomically by flush():
    a failing batch leaves earlier batches in place and discards itself.
    """

    def __init__(self) -> None:
        self.states: dict[int, dict[str, Any]] = {}
        self.regions: dict[int, dict[str, Any]] = {}
        self.districts: dict[int, dict[str, Any]] = {}
        self.lookups: dict[str, dict[int, dict[str, Any]]] = {k: {} for k in FLAT_LOOKUPS}
        self.facilities: dict[int, dict[str, Any]] = {}

        self._state_by_code: dict[str, int] = {}
        self._region_by_key: dict[tuple[int, str], int] = {}
        self._district_by_key: dict[tuple[int, str], int] = {}
        self._lookup_by_name: dict[str, dict[str, int]] = {k: {} for k in FLAT_LOOKUPS}
        self._facility_by_external_id: dict[str, int] = {}

        self._next_id: dict[str, int] = {}
        self._pending_inserts: list[tuple[FacilityValues, datetime]] = []
        self._pending_updates: list[tuple[int, FacilityValues, datetime]] = []
        self.commits = 0
        self.flushes = 0

    def _new_id(self, table: str) -> int:
        self._next_id[table] = self._next_id.get(table, 0) + 1
        return self._next_id[table]

    # -- states -----------------------------------------------------------

    def find_state(self, code: str) -> int | None:
        return self._state_by_code.get(code)

    def insert_state(self, code: str, name: str) -> int:
        _check_length("states.name", name, LOOKUP_NAME_LIMITS["state"])
        if code in self._state_by_code:
            raise StorageError("duplicate key value violates unique constraint \"states_code_key\"", "23505")
        state_id = self._new_id("states")
        self.states[state_id] = {"id": state_id, "code": code, "name": name, "created_at": datetime.now(timezone.utc)}
        self._state_by_code[code] = state_id
        return state_id

    # -- regions / districts ---------------------------------------------

    def find_region(self, state_id: int, name: str) -> int | None:
        return self._region_by_key.get((state_id, name))

    def insert_region(self, state_id: int, name: str) -> int:
        _check_length("regions.name", name, LOOKUP_NAME_LIMITS["region"])
        if state_id not in self.states:
            raise StorageError("insert violates foreign key constraint \"regions_state_id_fkey\"", "23503")
        region_id = self._new_id("regions")
        self.regions[region_id] = {"id": region_id, "state_id": state_id, "name": name}
        self._region_by_key[(state_id, name)] = region_id
        return region_id

    def find_district(self, region_id: int, name: str) -> int | None:
        return self._district_by_key.get((region_id, name))

    def insert_district(self, region_id: int, name: str) -> int:
        _check_length("districts.name", name, LOOKUP_NAME_LIMITS["district"])
        if region_id not in self.regions:
            raise StorageError("insert violates foreign key constraint \"districts_region_id_fkey\"", "23503")
        district_id = self._new_id("districts")
        self.districts[district_id] = {"id": district_id, "region_id": region_id, "name": name}
        self._district_by_key[(region_id, name)] = district_id
        return district_id

    # -- flat lookups -----------------------------------------------------

    def find_lookup(self, kind: str, name: str) -> int | None:
        return self._lookup_by_name[kind].get(name)

    def insert_lookup(self, kind: str, name: str) -> int:
        _check_length(f"{LOOKUP_TABLES[kind]}.name", name, LOOKUP_NAME_LIMITS[kind])
        lookup_id = self._new_id(LOOKUP_TABLES[kind])
        self.lookups[kind][lookup_id] = {"id": lookup_id, "name": name}
        self._lookup_by_name[kind][name] = lookup_id
        return lookup_id

    def commit(self) -> None:
        self.commits += 1

    # -- facilities -------------------------------------------------------

    def find_facility(self, external_facility_id: str) -> int | None:
        return self._facility_by_external_id.get(external_facility_id)

    def get_facility(self, external_facility_id: str) -> dict[str, Any] | None:
        facility_id = self._facility_by_external_id.get(external_facility_id)
        return self.facilities.get(facility_id) if facility_id is not None else None

    def add_facility(self, values: FacilityValues, now: datetime) -> None:
        self._pending_inserts.append((values, now))

    def update_facility(self, facility_id: int, values: FacilityValues, now: datetime) -> None:
        self._pending_updates.append((facility_id, values, now))

    def _validate(self, values: FacilityValues) -> None:
        for column, limit in FACILITY_COLUMN_LIMITS.items():
            _check_length(f"health_facilities.{column}", getattr(values, column), limit)
        for coord in (values.latitude, values.longitude):
            if coord is not None and abs(coord) > COORDINATE_MAX:
                raise StorageError("numeric field overflow", "22003")

    def flush(self) -> None:
        inserts, self._pending_inserts = self._pending_inserts, []
        updates, self._pending_updates = self._pending_updates, []

        seen = set(self._facility_by_external_id)
        for values, _ in inserts:
            self._validate(values)
            if values.external_facility_id in seen:
                raise StorageError(
                    "duplicate key value violates unique constraint "
                    "\"health_facilities_external_facility_id_key\"",
                    "23505",
                )
            seen.add(values.external_facility_id)
        for _, values, _ in updates:
            self._validate(values)

        for values, now in inserts:
            facility_id = self._new_id("health_facilities")
            self.facilities[facility_id] = {
                "id": facility_id,
                **values.as_row(),
                "created_at": now,
                "updated_at": now,
            }
            self._facility_by_external_id[values.external_facility_id] = facility_id
        for facility_id, values, now in updates:
            row = self.facilities[facility_id]
            row.update(values.as_row())
            row["updated_at"] = now

        self.flushes += 1
        self.commits += 1

    def facility_count(self) -> int:
        return len(self.facilities)
