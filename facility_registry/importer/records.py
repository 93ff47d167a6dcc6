"""
Record parser — decodes a facility CSV export into flat records.

Columns are matched by header name (order independent). Unknown columns
are ignored and missing ones read as empty strings, so a partial export
still parses; the reconciler decides later which records are usable.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Header → field mapping
# ---------------------------------------------------------------------------

COLUMN_MAP: dict[str, str] = {
    "New Facility ID": "external_facility_id",
    "Latitude": "latitude",
    "Longitude": "longitude",
    "State": "state",
    "Region": "region",
    "District": "district",
    "Health Facility Name": "facility_name",
    "Health Facility Type": "facility_type",
    "Ownership": "ownership",
    "HC partners": "hc_partners",
    "HC Project End date": "hc_project_end_date",
    "Nutrition Cluster Partners": "nutrition_cluster_partners",
    "Damal Caafimaad Partner": "damal_caafimaad_partner",
    "Damal Caafimaad Project end date": "damal_caafimaad_project_end_date",
    "Better Life Project Partner": "better_life_project_partner",
    "Better Life Project End Date": "better_life_project_end_date",
    "Caafimaad Plus Partner": "caafimaad_plus_partner",
    "Caafimaad Plus Project end": "caafimaad_plus_project_end_date",
    "Facility In-charge Name": "facility_in_charge_name",
    "Facility in-charge Number": "facility_in_charge_number",
    "Operational Status": "operational_status",
}

EXPECTED_HEADERS = list(COLUMN_MAP)


@dataclass(frozen=True)
class FacilityRecord:
    """One CSV row. Every value is trimmed text; absent columns are ''."""

    row_number: int
    external_facility_id: str = ""
    latitude: str = ""
    longitude: str = ""
    state: str = ""
    region: str = ""
    district: str = ""
    facility_name: str = ""
    facility_type: str = ""
    ownership: str = ""
    hc_partners: str = ""
    hc_project_end_date: str = ""
    nutrition_cluster_partners: str = ""
    damal_caafimaad_partner: str = ""
    damal_caafimaad_project_end_date: str = ""
    better_life_project_partner: str = ""
    better_life_project_end_date: str = ""
    caafimaad_plus_partner: str = ""
    caafimaad_plus_project_end_date: str = ""
    facility_in_charge_name: str = ""
    facility_in_charge_number: str = ""
    operational_status: str = ""


def _header_index(fieldnames: list[str] | None) -> dict[str, str]:
    """Map each raw header cell that we recognise to its record field."""
    index: dict[str, str] = {}
    for raw in fieldnames or []:
        if raw is None:
            continue
        target = COLUMN_MAP.get(raw.strip())
        if target and target not in index.values():
            index[raw] = target
    return index


def parse_csv_text(text: str) -> list[FacilityRecord]:
    """
    Parse CSV text (header row required) into a list of FacilityRecord.

    The result is materialised because the pipeline walks it twice:
    once to build lookup caches, once to reconcile facilities.
    """
    if text.startswith("\ufeff"):
        text = text[1:]

    reader = csv.DictReader(io.StringIO(text, newline=""))
    header = _header_index(reader.fieldnames)

    missing = [h for h in EXPECTED_HEADERS if COLUMN_MAP[h] not in header.values()]
    if missing:
        logger.warning("CSV is missing %d expected columns: %s", len(missing), ", ".join(missing))

    records: list[FacilityRecord] = []
    for i, row in enumerate(reader, start=1):
        values = {
            target: (row.get(raw) or "").strip()
            for raw, target in header.items()
        }
        records.append(FacilityRecord(row_number=i, **values))

    return records


def read_csv_file(path: str | Path) -> list[FacilityRecord]:
    """Read and parse a UTF-8 CSV file from disk."""
    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        records = parse_csv_text(f.read())
    logger.info("Read %d records from %s", len(records), path)
    return records
