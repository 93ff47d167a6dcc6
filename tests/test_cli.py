"""Tests for the import command-line entry point."""

from unittest.mock import patch

from facility_registry.importer.__main__ import main, parse_args


class TestParseArgs:
    def test_defaults(self):
        args = parse_args(["--csv-file", "facilities.csv"])
        assert args.csv_file == "facilities.csv"
        assert args.update_existing is False
        assert args.memory is False


class TestMain:
    def test_memory_import_succeeds(self, tmp_path, csv_text, facility_row):
        path = tmp_path / "facilities.csv"
        path.write_text(csv_text([facility_row("F001"), facility_row("")]), encoding="utf-8")
        assert main(["--csv-file", str(path), "--memory"]) == 0

    def test_missing_file(self, tmp_path):
        assert main(["--csv-file", str(tmp_path / "nope.csv"), "--memory"]) == 1

    def test_import_error_exits_nonzero(self, tmp_path, csv_text, facility_row):
        path = tmp_path / "facilities.csv"
        path.write_text(csv_text([facility_row("F001", region="R" * 150)]), encoding="utf-8")
        assert main(["--csv-file", str(path), "--memory"]) == 1

    def test_database_store_used_by_default(self, tmp_path, csv_text, facility_row):
        path = tmp_path / "facilities.csv"
        path.write_text(csv_text([facility_row("F001")]), encoding="utf-8")

        with (
            patch("facility_registry.importer.__main__.db.connect") as connect,
            patch("facility_registry.importer.__main__.run_import") as run_import,
        ):
            run_import.return_value.to_dict.return_value = {"health_facilities": 1}
            run_import.return_value.message.return_value = "done"
            assert main(["--csv-file", str(path)]) == 0

        connect.assert_called_once()
        connect.return_value.close.assert_called_once()

    def test_undecodable_file_exits_nonzero(self, tmp_path, csv_text, facility_row):
        path = tmp_path / "facilities.csv"
        path.write_bytes(csv_text([facility_row("F001", facility_name="Café")]).encode("latin-1"))
        assert main(["--csv-file", str(path), "--memory"]) == 1
