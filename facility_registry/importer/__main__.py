#!/usr/bin/env python3
"""
Health Facility Registry — CSV Import CLI

Imports a facility CSV export into PostgreSQL (or an in-memory store for
a dry run) and prints the import summary.

Usage:
    python -m facility_registry.importer --csv-file facilities.csv
    python -m facility_registry.importer --csv-file facilities.csv --update-existing
    python -m facility_registry.importer --csv-file facilities.csv --memory
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

import psycopg2

from .. import db
from .errors import FacilityImportError
from .postgres_store import PostgresStore
from .service import run_import
from .store import MemoryStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger("facility_registry.importer")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Health Facility Registry — CSV Import",
    )
    parser.add_argument(
        "--csv-file",
        required=True,
        help="Path to the facility CSV export",
    )
    parser.add_argument(
        "--update-existing",
        action="store_true",
        help="Overwrite facilities whose New Facility ID already exists (default: skip them)",
    )
    parser.add_argument(
        "--memory",
        action="store_true",
        help="Run against an in-memory store instead of PostgreSQL (dry run)",
    )
    parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Apply schema.sql before importing",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    csv_path = Path(args.csv_file)
    if not csv_path.is_file():
        logger.error("CSV file not found: %s", csv_path)
        return 1

    logger.info("=" * 60)
    logger.info("Health Facility Registry — CSV Import")
    logger.info("  CSV file:        %s", csv_path)
    logger.info("  Update existing: %s", args.update_existing)
    logger.info("  Store:           %s", "memory" if args.memory else "postgresql")
    logger.info("=" * 60)

    t0 = time.time()
    conn = None
    try:
        if args.memory:
            store = MemoryStore()
        else:
            conn = db.connect()
            if args.init_schema:
                with conn.cursor() as cur:
                    cur.execute(db.SCHEMA_FILE.read_text(encoding="utf-8"))
                conn.commit()
            store = PostgresStore(conn)

        result = run_import(csv_path, store, update_existing=args.update_existing)
    except FacilityImportError:
        logger.exception("Import failed")
        return 1
    except psycopg2.Error:
        logger.exception("Database error")
        return 1
    finally:
        if conn is not None:
            conn.close()

    elapsed = time.time() - t0
    logger.info("=" * 60)
    logger.info("IMPORT SUMMARY (%.1f seconds)", elapsed)
    for key, val in result.to_dict(skipped_limit=0).items():
        if key != "skipped_records":
            logger.info("  %-22s %d", key, val)
    logger.info("=" * 60)
    logger.info(result.message())
    return 0


if __name__ == "__main__":
    sys.exit(main())
