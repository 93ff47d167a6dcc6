"""Shared fixtures for the API test suite.

All tests run in memory mode (no database required): db.is_available()
is patched to False and each test gets a fresh MemoryStore.

Auth injection: we patch auth._cache_get so that magic test API keys
instantly resolve to the desired AuthContext without DB lookups.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from starlette.testclient import TestClient

from facility_registry.importer.store import MemoryStore

# ---------------------------------------------------------------------------
# Magic test API keys → AuthContext mapping
# ---------------------------------------------------------------------------

_TEST_KEYS: dict[str, object] = {}  # populated lazily


def _get_test_auth_contexts():
    """Build AuthContext instances for each tier, keyed by magic API key."""
    from facility_registry.auth import AuthContext

    if _TEST_KEYS:
        return _TEST_KEYS

    for tier in ("public", "registry_read", "registry_write", "admin"):
        key = f"hfr_test_{tier}_0000000000000000"
        _TEST_KEYS[key] = AuthContext(
            tier=tier,
            actor_id=f"test:{tier}_key",
            actor_type="api_user",
            key_id=f"test-{tier}-key-id",
        )

    return _TEST_KEYS


def _patched_cache_get(api_key: str):
    """Drop-in replacement for auth._cache_get that recognises test keys."""
    contexts = _get_test_auth_contexts()
    return contexts.get(api_key)


# ---------------------------------------------------------------------------
# App fixture: fresh memory store, DB patched away
# ---------------------------------------------------------------------------


@pytest.fixture()
def app():
    """FastAPI app running in memory mode (no DB)."""
    with (
        patch("facility_registry.db.is_available", return_value=False),
        patch("facility_registry.db.init_pool", return_value=False),
        patch("facility_registry.db.close_pool"),
        patch("facility_registry.auth._cache_get", side_effect=_patched_cache_get),
        patch("facility_registry.auth._validate_key", return_value=None),
    ):
        from facility_registry.app import app as _app

        _app.state.memory_store = MemoryStore()

        # Set server_started_at on app.state (normally done in startup event)
        _app.state.server_started_at = datetime(2026, 3, 1, 0, 0, 0, tzinfo=timezone.utc)

        yield _app


@pytest.fixture()
def memory_store(app):
    return app.state.memory_store


# ---------------------------------------------------------------------------
# Client fixtures: various auth tiers
# ---------------------------------------------------------------------------


@pytest.fixture()
def client(app):
    """Unauthenticated (public tier) TestClient — no API key header."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture()
def read_client(app):
    """registry_read tier TestClient."""
    return TestClient(
        app,
        raise_server_exceptions=False,
        headers={"X-API-Key": "hfr_test_registry_read_0000000000000000"},
    )


@pytest.fixture()
def write_client(app):
    """registry_write tier TestClient."""
    return TestClient(
        app,
        raise_server_exceptions=False,
        headers={"X-API-Key": "hfr_test_registry_write_0000000000000000"},
    )


@pytest.fixture()
def admin_client(app):
    """admin tier TestClient."""
    return TestClient(
        app,
        raise_server_exceptions=False,
        headers={"X-API-Key": "hfr_test_admin_0000000000000000"},
    )
