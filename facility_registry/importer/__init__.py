"""Health Facility Registry — CSV import pipeline."""

from .errors import (
    FacilityImportError,
    FacilityPersistenceError,
    LookupPersistenceError,
    classify_storage_error,
)
from .facilities import Skipped, reconcile_facilities, resolve_record
from .lookups import build_lookup_caches, lookup_key, reconcile_lookups
from .records import EXPECTED_HEADERS, FacilityRecord, parse_csv_text, read_csv_file
from .service import ImportResult, import_records, import_uploaded_bytes, run_import
from .store import FacilityValues, ImportStore, MemoryStore

__all__ = [
    "FacilityImportError",
    "FacilityPersistenceError",
    "LookupPersistenceError",
    "classify_storage_error",
    "Skipped",
    "reconcile_facilities",
    "resolve_record",
    "build_lookup_caches",
    "lookup_key",
    "reconcile_lookups",
    "EXPECTED_HEADERS",
    "FacilityRecord",
    "parse_csv_text",
    "read_csv_file",
    "ImportResult",
    "import_records",
    "import_uploaded_bytes",
    "run_import",
    "FacilityValues",
    "ImportStore",
    "MemoryStore",
]
