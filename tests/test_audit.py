"""
Tests for AuditSink.

Inline mode (background=False) writes on the calling thread so rows can be
read back; background mode is checked by patching threading.Thread.
"""
import json
import logging
import sqlite3
from unittest.mock import MagicMock, patch

from folio.audit import AuditSink
from folio.db import db


def read_events(db_path):
    with db(db_path) as conn:
        return conn.execute("SELECT * FROM processing_events ORDER BY rowid").fetchall()


class TestAuditSink:
    def test_inline_write(self, store):
        AuditSink(background=False).log_event(
            "ing-1", "user-1", "action", "Action Execution", {"action": "rename", "outcome": "success"}, store,
        )
        rows = read_events(store.db_path)
        assert len(rows) == 1
        assert rows[0]["ingestion_id"] == "ing-1"
        assert rows[0]["event_type"] == "action"
        assert rows[0]["agent_state"] == "Action Execution"
        assert json.loads(rows[0]["details"]) == {"action": "rename", "outcome": "success"}

    def test_no_store_skips(self, isolated_db):
        AuditSink(background=False).log_event("ing-1", "user-1", "action", "Action Execution", {}, None)
        assert read_events(isolated_db) == []

    def test_non_json_details_are_stringified(self, store):
        AuditSink(background=False).log_event(
            "ing-1", "user-1", "info", "Note", {"when": object()}, store,
        )
        assert "object" in json.loads(read_events(store.db_path)[0]["details"])["when"]

    def test_write_failure_is_logged_not_raised(self, caplog):
        store = MagicMock()
        store.connect.side_effect = sqlite3.OperationalError("database is locked")
        with caplog.at_level(logging.WARNING, logger="folio.audit"):
            AuditSink(background=False).log_event("ing-1", "user-1", "action", "Action Execution", {}, store)
        assert "Audit event failed for ingestion ing-1" in caplog.text

    def test_invalid_category_is_swallowed(self, store, caplog):
        AuditSink(background=False).log_event("ing-1", "user-1", "bogus", "x", {}, store)
        assert read_events(store.db_path) == []
        assert "Audit event failed" in caplog.text

    def test_background_uses_daemon_thread(self, store):
        with patch("folio.audit.threading.Thread") as thread_cls:
            AuditSink().log_event("ing-1", "user-1", "action", "Action Execution", {}, store)
        assert thread_cls.call_args[1]["daemon"] is True
        thread_cls.return_value.start.assert_called_once()
