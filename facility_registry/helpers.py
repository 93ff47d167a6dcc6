"""Shared helpers for the Health Facility Registry API."""

from __future__ import annotations

from datetime import datetime


def iso(value: datetime | None) -> str | None:
    """ISO-8601 string for a datetime, None passthrough."""
    return value.isoformat() if value is not None else None
