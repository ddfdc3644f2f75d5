import pytest

from folio.audit import AuditSink
from folio.db import StoreHandle, init_db


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Each test gets a fresh SQLite DB in a temp dir.
    db.py reads FOLIO_DB_PATH fresh on each get_connection() call,
    so monkeypatch.setenv is sufficient, no module reload needed.
    """
    db_path = str(tmp_path / "folio.db")
    monkeypatch.setenv("FOLIO_DB_PATH", db_path)
    monkeypatch.delenv("FOLIO_SERVICE_DB_PATH", raising=False)
    monkeypatch.delenv("FOLIO_SLACK_TOKEN", raising=False)
    init_db()
    yield db_path


@pytest.fixture
def store(isolated_db):
    return StoreHandle(isolated_db, user_id="user-1")


@pytest.fixture
def inline_audit():
    """Audit sink that writes on the calling thread so tests can read rows back."""
    return AuditSink(background=False)

