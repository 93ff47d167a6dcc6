"""Shared fixtures: facility CSV builders and an in-memory import store."""

from __future__ import annotations

import csv
import io

import pytest

from facility_registry.importer.records import COLUMN_MAP, EXPECTED_HEADERS
from facility_registry.importer.store import MemoryStore

FIELD_TO_HEADER = {field: header for header, field in COLUMN_MAP.items()}

# A complete, valid row keyed by record field name.
BASE_ROW: dict[str, str] = {
    "latitude": "2.0469",
    "longitude": "45.3182",
    "state": "Banadir",
    "region": "Banadir",
    "district": "Hodan",
    "facility_name": "Hodan MCH",
    "facility_type": "MCH",
    "ownership": "Public",
    "hc_partners": "UNICEF",
    "hc_project_end_date": "12/31/2025",
    "nutrition_cluster_partners": "No",
    "damal_caafimaad_partner": "N/A",
    "damal_caafimaad_project_end_date": "",
    "better_life_project_partner": "",
    "better_life_project_end_date": "Missing",
    "caafimaad_plus_partner": "Save the Children",
    "caafimaad_plus_project_end_date": "2026-06-30",
    "facility_in_charge_name": "Amina Hassan",
    "facility_in_charge_number": "0612345678",
    "operational_status": "Functional",
}


def _row(external_facility_id: str, **fields: str) -> dict[str, str]:
    return {**BASE_ROW, "external_facility_id": external_facility_id, **fields}


def _csv_text(rows: list[dict[str, str]], headers: list[str] | None = None) -> str:
    headers = headers or EXPECTED_HEADERS
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([row.get(COLUMN_MAP.get(h, ""), "") for h in headers])
    return buf.getvalue()


@pytest.fixture()
def facility_row():
    """Factory: facility_row("F001", district="Wadajir") → row dict by field name."""
    return _row


@pytest.fixture()
def csv_text():
    """Factory: csv_text([rows], headers=None) → CSV text with a header row."""
    return _csv_text


@pytest.fixture()
def store():
    return MemoryStore()
