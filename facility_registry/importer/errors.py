"""
Import failure taxonomy.

Row-level problems never raise: they become skip reasons. Everything in
this module aborts the whole import and reaches the caller as a single
descriptive error.
"""

from __future__ import annotations

import re

# PostgreSQL SQLSTATE codes we classify on.
PG_STRING_DATA_RIGHT_TRUNCATION = "22001"
PG_NUMERIC_VALUE_OUT_OF_RANGE = "22003"

_VARCHAR_LIMIT_RE = re.compile(r"value too long for type (?:character varying|varchar)\((\d+)\)")


class FacilityImportError(Exception):
    """Base class for failures that abort an import."""


class LookupPersistenceError(FacilityImportError):
    """A lookup level (states, regions, ...) could not be saved."""

    def __init__(self, message: str, *, level: str, value: str | None = None, limit: int | None = None):
        super().__init__(message)
        self.level = level
        self.value = value
        self.limit = limit


class FacilityPersistenceError(FacilityImportError):
    """A facility batch flush was rejected by storage."""

    def __init__(self, message: str, *, kind: str, limit: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.limit = limit


def lookup_too_long(level: str, label: str, value: str, limit: int) -> LookupPersistenceError:
    return LookupPersistenceError(
        f"{label} '{value}' is {len(value)} characters long, which exceeds the maximum "
        f"allowed length of {limit} characters. Please check the CSV data.",
        level=level,
        value=value,
        limit=limit,
    )


def _storage_message(exc: BaseException) -> str:
    # psycopg2 keeps the server text in pgerror; str() is a fine fallback.
    text = getattr(exc, "pgerror", None) or str(exc)
    return text.strip()


def classify_storage_error(exc: BaseException) -> FacilityPersistenceError:
    """
    Turn a storage exception raised while flushing facilities into a
    FacilityPersistenceError naming the likely cause.
    """
    code = getattr(exc, "pgcode", None)
    message = _storage_message(exc)

    if code == PG_STRING_DATA_RIGHT_TRUNCATION or "value too long" in message:
        match = _VARCHAR_LIMIT_RE.search(message)
        if match:
            limit = int(match.group(1))
            return FacilityPersistenceError(
                f"A field value exceeds the maximum allowed length of {limit} characters. "
                f"Database error: {message}. Please check the CSV data for fields that may be too long.",
                kind="string_length",
                limit=limit,
            )
        return FacilityPersistenceError(
            f"A field value exceeds the maximum allowed length. Database error: {message}. "
            "Please check the CSV data.",
            kind="string_length",
        )

    if (
        code == PG_NUMERIC_VALUE_OUT_OF_RANGE
        or "numeric field overflow" in message
        or "numeric overflow" in message
    ):
        return FacilityPersistenceError(
            "Numeric field overflow error: A numeric value exceeds the allowed range. "
            "This usually occurs with Latitude/Longitude coordinates that exceed "
            "NUMERIC(10,7) (max 999.9999999). Check CSV coordinates for FacilityIds "
            f"near the error location. Database error: {message}",
            kind="numeric_overflow",
        )

    return FacilityPersistenceError(
        f"Error saving Health Facilities to database: {type(exc).__name__}. Inner exception: {message}",
        kind="constraint",
    )
