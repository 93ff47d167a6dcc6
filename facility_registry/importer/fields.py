"""
Field transformation rules applied to every accepted facility record.

None of these raise: unusable source values become None (with a log line
for coordinates) and the record is still imported.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COORDINATE_PLACES = Decimal("0.0000001")  # NUMERIC(10, 7)
LATITUDE_RANGE = (Decimal(-90), Decimal(90))
LONGITUDE_RANGE = (Decimal(-180), Decimal(180))

_MISSING_COORDINATE = {"missing"}
_EMPTY_TEXT = {"no", "n/a"}
_EMPTY_IN_CHARGE_NUMBER = {"no", "n/a", "missing"}
_EMPTY_DATE = {"no", "missing", "n/a"}

# Spreadsheet date spellings seen in facility exports, tried in order
# before falling back to dateutil. strptime accepts unpadded fields, so
# "%m/%d/%Y" matches both 3/5/2024 and 03/05/2024 (likewise with a time).
DATE_FORMATS = (
    "%m/%d/%Y",
    "%Y-%m-%d",
    "%d-%b-%y",
    "%d-%m-%Y",
    "%b %d, %Y",
    "%m/%d/%Y %H:%M:%S",
)

_FILL_A = datetime(2000, 1, 1)
_FILL_B = datetime(2001, 2, 2)


# ---------------------------------------------------------------------------
# Coordinates
# ---------------------------------------------------------------------------


def parse_coordinate(
    raw: str | None,
    bounds: tuple[Decimal, Decimal],
    *,
    label: str = "coordinate",
    facility_id: str = "",
) -> Decimal | None:
    """
    Parse a latitude/longitude cell.

    Blank or "missing" → None. Unparseable or out-of-range → None (logged).
    Valid values are rounded half away from zero to 7 decimal places.
    """
    if raw is None:
        return None
    text = raw.strip()
    if not text or text.lower() in _MISSING_COORDINATE:
        return None

    try:
        value = Decimal(text)
    except InvalidOperation:
        logger.warning(
            "Could not parse %s value '%s' for FacilityId '%s'. Setting to null.",
            label, text, facility_id,
        )
        return None

    if not value.is_finite():
        logger.warning(
            "Could not parse %s value '%s' for FacilityId '%s'. Setting to null.",
            label, text, facility_id,
        )
        return None

    low, high = bounds
    if not (low <= value <= high):
        logger.warning(
            "Invalid %s value '%s' for FacilityId '%s'. Must be between %s and %s. Setting to null.",
            label, text, facility_id, low, high,
        )
        return None

    return value.quantize(COORDINATE_PLACES, rounding=ROUND_HALF_UP)


def parse_latitude(raw: str | None, facility_id: str = "") -> Decimal | None:
    return parse_coordinate(raw, LATITUDE_RANGE, label="latitude", facility_id=facility_id)


def parse_longitude(raw: str | None, facility_id: str = "") -> Decimal | None:
    return parse_coordinate(raw, LONGITUDE_RANGE, label="longitude", facility_id=facility_id)


# ---------------------------------------------------------------------------
# Free text
# ---------------------------------------------------------------------------


def normalize_text(value: str | None) -> str | None:
    """Partner / in-charge name cells: blank, "No", "N/A" → None."""
    if value is None:
        return None
    text = value.strip()
    if not text or text.lower() in _EMPTY_TEXT:
        return None
    return text


def normalize_in_charge_number(value: str | None) -> str | None:
    """
    Facility in-charge phone cell.

    Kept verbatim otherwise: leading zeros, spaces and non-numeric
    entries such as "Closed" are not validated.
    """
    if value is None:
        return None
    text = value.strip()
    if not text or text.lower() in _EMPTY_IN_CHARGE_NUMBER:
        return None
    return text


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    # Naive values are taken to already be UTC, not server-local time.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_date(value: str | None) -> datetime | None:
    """Parse a project end-date cell into an aware UTC datetime, or None."""
    if value is None:
        return None
    text = value.strip()
    if not text or text.lower() in _EMPTY_DATE:
        return None

    for fmt in DATE_FORMATS:
        try:
            return _as_utc(datetime.strptime(text, fmt))
        except ValueError:
            continue

    try:
        first = date_parser.parse(text, default=_FILL_A)
        second = date_parser.parse(text, default=_FILL_B)
    except (ValueError, OverflowError):
        logger.debug("Unparseable date '%s', storing null", text)
        return None

    # dateutil fills absent parts from the default; a partial date differs
    # between the two fills.
    if first != second:
        logger.debug("Incomplete date '%s', storing null", text)
        return None
    return _as_utc(first)
