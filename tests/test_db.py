"""Tests for the database layer and settings."""
import sqlite3
from unittest.mock import MagicMock

import pytest

from folio.config import get_settings
from folio.db import StoreHandle, db, get_service_store, init_db, update_ingestion_location
from folio.errors import StorageError


class TestInitDb:
    def test_idempotent(self, isolated_db):
        init_db()
        init_db()
        with db() as conn:
            tables = {r["name"] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert {"policies", "baseline_configs", "ingestions", "processing_events"} <= tables

    def test_db_rolls_back_on_error(self, isolated_db):
        with pytest.raises(RuntimeError):
            with db() as conn:
                conn.execute("INSERT INTO ingestions (id, user_id, filename) VALUES ('i1', 'u1', 'a.pdf')")
                raise RuntimeError("abort")
        with db() as conn:
            assert conn.execute("SELECT COUNT(*) FROM ingestions").fetchone()[0] == 0


class TestStoreHandles:
    def test_service_store_absent_by_default(self):
        assert get_service_store() is None

    def test_service_store_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FOLIO_SERVICE_DB_PATH", str(tmp_path / "service.db"))
        handle = get_service_store()
        assert handle.elevated is True
        assert handle.user_id is None
        assert "service" in repr(handle)

    def test_repr_shows_user(self, store):
        assert "user='user-1'" in repr(store)


class TestUpdateIngestionLocation:
    def test_updates_row(self, store):
        with store.connect() as conn:
            conn.execute("INSERT INTO ingestions (id, user_id, filename, storage_path) VALUES ('i1', 'user-1', 'a.pdf', '/in/a.pdf')")
        assert update_ingestion_location(store, "i1", "/in/b.pdf", "b.pdf") is True
        with store.connect() as conn:
            row = conn.execute("SELECT filename, storage_path FROM ingestions WHERE id = 'i1'").fetchone()
        assert (row["filename"], row["storage_path"]) == ("b.pdf", "/in/b.pdf")

    def test_missing_row_returns_false(self, store):
        assert update_ingestion_location(store, "nope", "/x.pdf", "x.pdf") is False

    def test_storage_error(self):
        broken = MagicMock(spec=StoreHandle)
        broken.connect.side_effect = sqlite3.OperationalError("disk full")
        with pytest.raises(StorageError):
            update_ingestion_location(broken, "i1", "/x.pdf", "x.pdf")


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("FOLIO_POLICY_CACHE_TTL", "FOLIO_WEBHOOK_TIMEOUT", "FOLIO_REMOTE_SCHEME"):
            monkeypatch.delenv(name, raising=False)
        settings = get_settings()
        assert settings.policy_cache_ttl == 30.0
        assert settings.webhook_timeout == 10.0
        assert settings.remote_scheme == "gdrive://"
        assert settings.slack_token is None

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("FOLIO_POLICY_CACHE_TTL", "5")
        monkeypatch.setenv("FOLIO_WEBHOOK_TIMEOUT", "2.5")
        monkeypatch.setenv("FOLIO_REMOTE_SCHEME", "s3://")
        settings = get_settings()
        assert (settings.policy_cache_ttl, settings.webhook_timeout, settings.remote_scheme) == (5.0, 2.5, "s3://")
