"""Tests for per-record resolution and the facility reconciler loop."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from facility_registry.importer.errors import FacilityImportError, FacilityPersistenceError
from facility_registry.importer.facilities import (
    Accepted,
    Skipped,
    _batch_size_from_env,
    reconcile_facilities,
    resolve_record,
)
from facility_registry.importer.lookups import ResolvedLookups, build_lookup_caches, reconcile_lookups
from facility_registry.importer.records import parse_csv_text
from facility_registry.importer.store import MemoryStore

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

LOOKUPS = ResolvedLookups(
    states={"Banadir": 1},
    regions={"Banadir|Banadir": 10},
    districts={"Banadir|Banadir|Hodan": 100},
    flat={
        "facility_type": {"MCH": 7},
        "ownership": {"Public": 8},
        "operational_status": {"Functional": 9},
    },
)


@pytest.fixture()
def record(facility_row, csv_text):
    """Factory: one parsed FacilityRecord from field overrides."""

    def _make(fid="F001", **fields):
        return parse_csv_text(csv_text([facility_row(fid, **fields)]))[0]

    return _make


def _prepare(records, store):
    return reconcile_lookups(build_lookup_caches(records), store)


# ---- resolve_record ---------------------------------------------------------


class TestResolveRecord:
    def test_accepted_with_resolved_keys(self, record):
        result = resolve_record(record(), LOOKUPS)

        assert isinstance(result, Accepted)
        values = result.values
        assert values.external_facility_id == "F001"
        assert values.name == "Hodan MCH"
        assert values.district_id == 100
        assert values.facility_type_id == 7
        assert values.ownership_id == 8
        assert values.operational_status_id == 9

    def test_fields_transformed(self, record):
        values = resolve_record(record(latitude="12.34567891234"), LOOKUPS).values
        assert values.latitude == Decimal("12.3456789")
        assert values.hc_partners == "UNICEF"
        assert values.nutrition_cluster_partners is None
        assert values.damal_caafimaad_partner is None
        assert values.hc_project_end_date == datetime(2025, 12, 31, tzinfo=timezone.utc)
        assert values.better_life_project_end_date is None
        assert values.facility_in_charge_number == "0612345678"

    def test_bad_coordinate_does_not_skip(self, record):
        result = resolve_record(record(latitude="95.0", longitude="east"), LOOKUPS)
        assert isinstance(result, Accepted)
        assert result.values.latitude is None
        assert result.values.longitude is None

    def test_blank_facility_name_is_empty_string(self, record):
        assert resolve_record(record(facility_name=""), LOOKUPS).values.name == ""

    @pytest.mark.parametrize(
        "fields, reason",
        [
            ({"state": ""}, "State is empty for FacilityId 'F001'"),
            (
                {"state": "Galmudug"},
                "State 'Galmudug' was not found in registered States lookup table for FacilityId 'F001'",
            ),
            ({"region": ""}, "Region is empty for FacilityId 'F001'"),
            ({"district": ""}, "District is empty for FacilityId 'F001'"),
            (
                {"region": "Banadr"},
                "Region 'Banadr' in State 'Banadir' was not found in registered Regions lookup table",
            ),
            (
                {"district": "Hodn"},
                "District 'Hodn' in Region 'Banadir' was not found in registered Districts lookup table",
            ),
            ({"facility_type": ""}, "HealthFacilityType is empty for FacilityId 'F001'"),
            (
                {"facility_type": "Hospital"},
                "HealthFacilityType 'Hospital' was not found in registered FacilityTypes lookup table "
                "for FacilityId 'F001'",
            ),
            ({"ownership": ""}, "Ownership is empty for FacilityId 'F001'"),
            (
                {"ownership": "Private"},
                "Ownership 'Private' was not found in registered Ownerships lookup table for FacilityId 'F001'",
            ),
            ({"operational_status": ""}, "OperationalStatus is empty for FacilityId 'F001'"),
        ],
    )
    def test_skip_reasons(self, record, fields, reason):
        result = resolve_record(record(**fields), LOOKUPS)
        assert result == Skipped(identifier="F001", reason=reason)

    def test_hierarchy_checked_before_flat_lookups(self, record):
        result = resolve_record(record(district="Hodn", facility_type=""), LOOKUPS)
        assert "District 'Hodn'" in result.reason


# ---- reconcile_facilities ---------------------------------------------------


class TestReconcileFacilities:
    def _run(self, records, store, **kwargs):
        lookups = _prepare(records, store)
        kwargs.setdefault("clock", lambda: FIXED_NOW)
        return reconcile_facilities(records, lookups, store, **kwargs)

    def test_inserts_accepted_records(self, store, facility_row, csv_text):
        records = parse_csv_text(csv_text([facility_row("F001"), facility_row("F002", district="Wadajir")]))
        outcome = self._run(records, store)

        assert outcome.inserted == 2
        assert outcome.updated == 0
        assert outcome.skipped == []
        row = store.get_facility("F001")
        assert row["created_at"] == row["updated_at"] == FIXED_NOW

    def test_blank_id_identified_by_row(self, store, facility_row, csv_text):
        records = parse_csv_text(csv_text([facility_row("F001"), facility_row("")]))
        outcome = self._run(records, store)
        assert outcome.skipped == [Skipped("Row 2", "FacilityId is empty")]

    def test_duplicate_within_file(self, store, facility_row, csv_text):
        records = parse_csv_text(csv_text([facility_row("F001"), facility_row("F001", facility_name="Other")]))
        outcome = self._run(records, store)

        assert outcome.inserted == 1
        assert outcome.skipped == [
            Skipped("F001", "Duplicate FacilityId 'F001' found in CSV (already processed in this import session)")
        ]
        assert store.get_facility("F001")["name"] == "Hodan MCH"

    def test_skipped_record_does_not_block_later_duplicate(self, store, facility_row, csv_text):
        records = parse_csv_text(csv_text([facility_row("F001", ownership=""), facility_row("F001")]))
        outcome = self._run(records, store)
        assert outcome.inserted == 1
        assert len(outcome.skipped) == 1

    def test_existing_skipped_without_update(self, store, facility_row, csv_text):
        records = parse_csv_text(csv_text([facility_row("F001")]))
        self._run(records, store)
        outcome = self._run(records, store)

        assert outcome.inserted == 0
        assert outcome.skipped == [Skipped("F001", "FacilityId 'F001' already exists in database")]

    def test_existing_overwritten_with_update(self, store, facility_row, csv_text):
        self._run(parse_csv_text(csv_text([facility_row("F001")])), store)
        later = datetime(2026, 4, 1, tzinfo=timezone.utc)
        records = parse_csv_text(csv_text([facility_row("F001", facility_name="Hodan MCH (new)", hc_partners="No")]))

        outcome = self._run(records, store, update_existing=True, clock=lambda: later)

        assert outcome.inserted == 0
        assert outcome.updated == 1
        row = store.get_facility("F001")
        assert row["name"] == "Hodan MCH (new)"
        assert row["hc_partners"] is None
        assert row["created_at"] == FIXED_NOW
        assert row["updated_at"] == later
        assert store.facility_count() == 1

    def test_flushes_every_batch(self, store, facility_row, csv_text):
        records = parse_csv_text(csv_text([facility_row(f"F{i:03d}") for i in range(1, 8)]))
        self._run(records, store, batch_size=3)
        assert store.flushes == 3
        assert store.facility_count() == 7

    def test_earlier_batches_survive_failed_flush(self, store, facility_row, csv_text):
        rows = [facility_row(f"F{i:03d}") for i in range(1, 5)]
        rows[2] = facility_row("F003", facility_name="N" * 300)
        records = parse_csv_text(csv_text(rows))

        with pytest.raises(FacilityPersistenceError) as excinfo:
            self._run(records, store, batch_size=2)

        assert excinfo.value.kind == "string_length"
        assert excinfo.value.limit == 255
        assert store.facility_count() == 2
        assert store.get_facility("F003") is None

    def test_unexpected_error_wrapped(self, facility_row, csv_text):
        class BrokenStore(MemoryStore):
            def find_facility(self, external_facility_id):
                raise RuntimeError("socket closed")

        store = BrokenStore()
        records = parse_csv_text(csv_text([facility_row("F001")]))

        with pytest.raises(FacilityImportError) as excinfo:
            self._run(records, store)

        assert str(excinfo.value) == "Error creating health facilities: socket closed"
        assert not isinstance(excinfo.value, FacilityPersistenceError)

    def test_flush_error_classified(self, facility_row, csv_text):
        class RejectingStore(MemoryStore):
            def flush(self):
                raise RuntimeError('duplicate key value violates unique constraint "health_facilities_pkey"')

        store = RejectingStore()
        records = parse_csv_text(csv_text([facility_row("F001")]))

        with pytest.raises(FacilityPersistenceError) as excinfo:
            self._run(records, store)

        assert excinfo.value.kind == "constraint"
        assert "RuntimeError" in str(excinfo.value)


class TestBatchSizeFromEnv:
    def test_default(self, monkeypatch):
        monkeypatch.delenv("HFR_IMPORT_BATCH_SIZE", raising=False)
        assert _batch_size_from_env() == 100

    def test_configured(self, monkeypatch):
        monkeypatch.setenv("HFR_IMPORT_BATCH_SIZE", "250")
        assert _batch_size_from_env() == 250

    @pytest.mark.parametrize("raw", ["0", "-5"])
    def test_clamped_to_one(self, monkeypatch, raw):
        monkeypatch.setenv("HFR_IMPORT_BATCH_SIZE", raw)
        assert _batch_size_from_env() == 1
