"""
PostgreSQL implementation of the import store (psycopg2).

Lookup inserts run inside the current transaction with RETURNING id so
the next level can reference them; `commit()` closes each level. Facility
writes are buffered and sent by `flush()` as one INSERT ... VALUES batch
plus the staged UPDATEs, then committed. A failed flush rolls back that
batch only.
"""

from __future__ import annotations

import logging
from datetime import datetime

from psycopg2 import extras

from .store import FACILITY_COLUMNS, FacilityValues, LOOKUP_TABLES

logger = logging.getLogger(__name__)

_INSERT_FACILITIES = (
    "INSERT INTO health_facilities ("
    + ", ".join(FACILITY_COLUMNS)
    + ", created_at, updated_at) VALUES %s"
)

_UPDATE_FACILITY = (
    "UPDATE health_facilities SET "
    + ", ".join(f"{col} = %({col})s" for col in FACILITY_COLUMNS)
    + ", updated_at = %(updated_at)s WHERE id = %(id)s"
)


class PostgresStore:
    """ImportStore over a single psycopg2 connection (autocommit off)."""

    def __init__(self, conn) -> None:
        self.conn = conn
        self._pending_inserts: list[tuple] = []
        self._pending_updates: list[dict] = []

    def _scalar(self, sql: str, params: tuple):
        with self.conn.cursor() as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
        return row[0] if row else None

    # -- states / regions / districts -------------------------------------

    def find_state(self, code: str) -> int | None:
        return self._scalar("SELECT id FROM states WHERE code = %s LIMIT 1", (code,))

    def insert_state(self, code: str, name: str) -> int:
        return self._scalar(
            "INSERT INTO states (code, name) VALUES (%s, %s) RETURNING id",
            (code, name),
        )

    def find_region(self, state_id: int, name: str) -> int | None:
        return self._scalar(
            "SELECT id FROM regions WHERE state_id = %s AND name = %s LIMIT 1",
            (state_id, name),
        )

    def insert_region(self, state_id: int, name: str) -> int:
        return self._scalar(
            "INSERT INTO regions (state_id, name) VALUES (%s, %s) RETURNING id",
            (state_id, name),
        )

    def find_district(self, region_id: int, name: str) -> int | None:
        return self._scalar(
            "SELECT id FROM districts WHERE region_id = %s AND name = %s LIMIT 1",
            (region_id, name),
        )

    def insert_district(self, region_id: int, name: str) -> int:
        return self._scalar(
            "INSERT INTO districts (region_id, name) VALUES (%s, %s) RETURNING id",
            (region_id, name),
        )

    # -- flat lookups -----------------------------------------------------

    def find_lookup(self, kind: str, name: str) -> int | None:
        table = LOOKUP_TABLES[kind]
        return self._scalar(f"SELECT id FROM {table} WHERE name = %s LIMIT 1", (name,))

    def insert_lookup(self, kind: str, name: str) -> int:
        table = LOOKUP_TABLES[kind]
        return self._scalar(f"INSERT INTO {table} (name) VALUES (%s) RETURNING id", (name,))

    def commit(self) -> None:
        self.conn.commit()

    # -- facilities -------------------------------------------------------

    def find_facility(self, external_facility_id: str) -> int | None:
        return self._scalar(
            "SELECT id FROM health_facilities WHERE external_facility_id = %s",
            (external_facility_id,),
        )

    def add_facility(self, values: FacilityValues, now: datetime) -> None:
        row = values.as_row()
        self._pending_inserts.append(tuple(row[col] for col in FACILITY_COLUMNS) + (now, now))

    def update_facility(self, facility_id: int, values: FacilityValues, now: datetime) -> None:
        self._pending_updates.append({**values.as_row(), "updated_at": now, "id": facility_id})

    def flush(self) -> None:
        inserts, self._pending_inserts = self._pending_inserts, []
        updates, self._pending_updates = self._pending_updates, []
        if not inserts and not updates:
            return

        try:
            with self.conn.cursor() as cur:
                if inserts:
                    extras.execute_values(cur, _INSERT_FACILITIES, inserts, page_size=len(inserts))
                if updates:
                    extras.execute_batch(cur, _UPDATE_FACILITY, updates)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        logger.debug("Committed %d inserts, %d updates", len(inserts), len(updates))

    def facility_count(self) -> int:
        return int(self._scalar("SELECT count(*) FROM health_facilities", ()) or 0)
