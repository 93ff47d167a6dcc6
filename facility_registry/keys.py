#!/usr/bin/env python3
"""
Health Facility Registry — API Key Management CLI

Usage:
    python -m facility_registry.keys create --label "Data team import" --tier admin
    python -m facility_registry.keys list
    python -m facility_registry.keys revoke --key-id 3

Key format: hfr_{env}_{32 alphanumeric}
Keys are bcrypt-hashed before storage. The plaintext key is shown ONCE at creation.
"""

from __future__ import annotations

import argparse
import os
import secrets
import string
import sys

from . import db
from .auth import TIER_HIERARCHY, hash_key
from .db import extras

VALID_TIERS = tuple(TIER_HIERARCHY)


def generate_api_key(env: str = "live") -> str:
    """Generate a key: hfr_{env}_{32 alphanumeric}."""
    charset = string.ascii_lowercase + string.digits
    random_part = "".join(secrets.choice(charset) for _ in range(32))
    return f"hfr_{env}_{random_part}"


def _connection():
    conn = db.connect()
    conn.autocommit = True
    return conn


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_create(args) -> int:
    plaintext_key = generate_api_key(os.environ.get("HFR_ENV", "live"))

    conn = _connection()
    try:
        with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
            cur.execute(
                """
                INSERT INTO api_keys (key_prefix, key_hash, tier, label)
                VALUES (%s, %s, %s, %s)
                RETURNING id, created_at
                """,
                (plaintext_key[:16], hash_key(plaintext_key), args.tier, args.label),
            )
            row = cur.fetchone()
    finally:
        conn.close()

    print()
    print("=" * 60)
    print("  API KEY CREATED")
    print("=" * 60)
    print(f"  Key ID:   {row['id']}")
    print(f"  Label:    {args.label}")
    print(f"  Tier:     {args.tier}")
    print(f"  Created:  {row['created_at']}")
    print()
    print("  PLAINTEXT KEY (shown ONCE, save it now):")
    print(f"  {plaintext_key}")
    print("=" * 60)
    print()
    return 0


def cmd_list(args) -> int:
    conn = _connection()
    try:
        with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
            cur.execute(
                """
                SELECT id, key_prefix, tier, label, is_active, last_used_at, created_at
                FROM api_keys
                ORDER BY created_at DESC
                """
            )
            rows = cur.fetchall()
    finally:
        conn.close()

    if not rows:
        print("\nNo API keys found.\n")
        return 0

    print()
    print(f"{'ID':<6} {'Prefix':<18} {'Tier':<16} {'Active':<8} {'Last Used':<22} {'Label'}")
    print("-" * 100)
    for r in rows:
        last_used = str(r["last_used_at"])[:19] if r["last_used_at"] else "never"
        active = "yes" if r["is_active"] else "NO"
        print(f"{r['id']:<6} {r['key_prefix']:<18} {r['tier']:<16} {active:<8} {last_used:<22} {r['label'] or '-'}")
    print()
    print(f"Total: {len(rows)} keys ({sum(1 for r in rows if r['is_active'])} active)")
    print()
    return 0


def cmd_revoke(args) -> int:
    conn = _connection()
    try:
        with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
            cur.execute(
                "UPDATE api_keys SET is_active = false WHERE id = %s AND is_active RETURNING id, tier",
                (args.key_id,),
            )
            row = cur.fetchone()
    finally:
        conn.close()

    if not row:
        print(f"\nError: no active key with ID {args.key_id}.\n")
        return 1
    print(f"\nRevoked key {row['id']} ({row['tier']}). Cached copies expire within 5 minutes.\n")
    return 0


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Health Facility Registry — API Key Management",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    create_parser = subparsers.add_parser("create", help="Create a new API key")
    create_parser.add_argument("--label", required=True, help="Human-readable label for the key")
    create_parser.add_argument("--tier", required=True, choices=VALID_TIERS, help="Access tier")

    subparsers.add_parser("list", help="List all API keys")

    revoke_parser = subparsers.add_parser("revoke", help="Revoke an API key")
    revoke_parser.add_argument("--key-id", required=True, type=int, help="ID of the key to revoke")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "create": cmd_create,
        "list": cmd_list,
        "revoke": cmd_revoke,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
