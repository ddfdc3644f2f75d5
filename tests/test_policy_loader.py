"""
Tests for PolicyLoader and PolicyCache.

Uses the real SQLite DB from the isolated_db fixture. Read-path failures are
simulated with a MagicMock store whose connect() raises.
"""
import json
import sqlite3
import threading
from unittest.mock import MagicMock

import pytest

from folio.db import StoreHandle, db
from folio.errors import AuthRequired, ConfigValidationError, NotFound, StorageError
from folio.models import Policy, PolicyPatch
from folio.policy_loader import PolicyCache, PolicyLoader


def policy_doc(policy_id="invoices", priority=100, enabled=True, **metadata):
    return {
        "apiVersion": "folio/v1",
        "kind": "Policy",
        "metadata": {"id": policy_id, "name": policy_id.title(), "priority": priority, "enabled": enabled, **metadata},
        "spec": {
            "match": {"strategy": "ALL", "conditions": [{"type": "keyword", "value": ["invoice", "total"]}]},
            "extract": [
                {"key": "date", "type": "date", "transformers": [{"name": "get_year", "as": "year"}]},
            ],
            "actions": [
                {"type": "rename", "config": {"pattern": "{date}_{issuer}"}},
                {"type": "copy", "destination": "/archive/{year}"},
            ],
        },
    }


def make_policy(*args, **kwargs) -> Policy:
    return Policy.model_validate(policy_doc(*args, **kwargs))


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def loader(clock):
    return PolicyLoader(cache=PolicyCache(ttl=30, clock=clock))


def broken_store(user_id="user-1"):
    store = MagicMock()
    store.user_id = user_id
    store.connect.side_effect = sqlite3.OperationalError("disk I/O error")
    return store


# ── load ──────────────────────────────────────────────────────────────────────

class TestLoad:
    def test_no_store_returns_empty(self, loader):
        assert loader.load() == []

    def test_store_without_user_returns_empty(self, loader, isolated_db):
        loader.save(make_policy("mine"), StoreHandle(isolated_db, user_id="user-1"), "user-1")
        anonymous = StoreHandle(isolated_db, user_id=None)
        assert loader.load(store=anonymous) == []

    def test_returns_enabled_by_priority_desc(self, loader, store):
        loader.save(make_policy("low", priority=10), store, "user-1")
        loader.save(make_policy("high", priority=300), store, "user-1")
        loader.save(make_policy("off", priority=999, enabled=False), store, "user-1")

        policies = loader.load(store=store)
        assert [p.metadata.id for p in policies] == ["high", "low"]

    def test_users_are_isolated(self, loader, store, isolated_db):
        other = StoreHandle(isolated_db, user_id="user-2")
        loader.save(make_policy("mine"), store, "user-1")
        loader.save(make_policy("theirs"), other, "user-2")

        assert [p.metadata.id for p in loader.load(store=store)] == ["mine"]
        assert [p.metadata.id for p in loader.load(store=other)] == ["theirs"]

    def test_round_trip_keeps_legacy_keys_and_transformer_alias(self, loader, store):
        loader.save(make_policy(), store, "user-1")
        policy = loader.load(store=store)[0]

        copy_action = policy.spec.actions[1]
        assert copy_action.legacy_value("destination") == "/archive/{year}"
        assert policy.spec.extract[0].transformers[0].as_ == "year"
        assert policy.model_dump(by_alias=True)["apiVersion"] == "folio/v1"

    def test_read_failure_returns_empty_and_logs(self, loader, caplog):
        assert loader.load(store=broken_store()) == []
        assert "Failed to load policies" in caplog.text

    def test_malformed_row_returns_empty(self, loader, store):
        with db(store.db_path) as conn:
            conn.execute(
                "INSERT INTO policies (user_id, policy_id, metadata, spec) VALUES (?, ?, ?, ?)",
                ("user-1", "bad", "{}", "not json"),
            )
        assert loader.load(store=store) == []


# ── cache ─────────────────────────────────────────────────────────────────────

class TestCache:
    def insert_directly(self, store, policy_id):
        policy = make_policy(policy_id)
        with db(store.db_path) as conn:
            conn.execute(
                "INSERT INTO policies (user_id, policy_id, metadata, spec, priority) VALUES (?, ?, ?, ?, ?)",
                ("user-1", policy_id, json.dumps(policy.metadata.model_dump()),
                 json.dumps(policy.spec.model_dump(by_alias=True)), 100),
            )

    def test_snapshot_served_within_ttl(self, loader, store, clock):
        assert loader.load(store=store) == []
        self.insert_directly(store, "sneaky")
        clock.now += 29
        assert loader.load(store=store) == []

    def test_snapshot_expires_after_ttl(self, loader, store, clock):
        loader.load(store=store)
        self.insert_directly(store, "later")
        clock.now += 30
        assert [p.metadata.id for p in loader.load(store=store)] == ["later"]

    def test_force_refresh_bypasses_cache(self, loader, store):
        loader.load(store=store)
        self.insert_directly(store, "fresh")
        assert len(loader.load(force_refresh=True, store=store)) == 1

    def test_save_invalidates_before_returning(self, loader, store):
        loader.load(store=store)
        loader.save(make_policy("new"), store, "user-1")
        assert [p.metadata.id for p in loader.load(store=store)] == ["new"]

    def test_invalidate_cache_single_user(self, loader, store):
        loader.load(store=store)
        self.insert_directly(store, "x")
        loader.invalidate_cache("user-1")
        assert len(loader.load(store=store)) == 1

    def test_failed_read_is_not_cached(self, loader, store):
        loader.load(store=broken_store())
        loader.save(make_policy("ok"), store, "user-1")
        assert len(loader.load(store=store)) == 1

    def test_cache_returns_copies(self):
        cache = PolicyCache(ttl=30)
        cache.set("u", [make_policy()])
        cache.get("u").clear()
        assert len(cache.get("u")) == 1

    def test_save_during_load_is_not_hidden_by_stale_snapshot(self, loader, store):
        loader.save(make_policy("a"), store, "user-1")
        fetch = loader._fetch_enabled

        def fetch_then_save(store_, user_id):
            rows = fetch(store_, user_id)
            loader.save(make_policy("b"), store, "user-1")
            return rows

        loader._fetch_enabled = fetch_then_save
        assert [p.metadata.id for p in loader.load(store=store)] == ["a"]
        loader._fetch_enabled = fetch

        assert [p.metadata.id for p in loader.load(store=store)] == ["a", "b"]

    def test_set_rejects_snapshot_from_before_invalidate(self):
        cache = PolicyCache(ttl=30)
        generation = cache.generation()
        cache.invalidate()
        assert cache.set("u", [make_policy()], generation) is False
        assert cache.get("u") is None
        assert cache.set("u", [make_policy()], cache.generation()) is True

    def test_concurrent_load_and_save(self, loader, store):
        errors = []

        def worker(i):
            try:
                loader.save(make_policy(f"p{i}"), store, "user-1")
                loader.load(store=store)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(loader.load(store=store)) == 8


# ── save ──────────────────────────────────────────────────────────────────────

class TestSave:
    def test_returns_location(self, loader, store):
        assert loader.save(make_policy("invoices"), store, "user-1") == "db:policies/invoices"

    def test_upsert_replaces_definition(self, loader, store):
        loader.save(make_policy("invoices", priority=100), store, "user-1")
        updated = policy_doc("invoices", priority=500, description="v2")
        updated["spec"]["actions"] = [{"type": "notify", "config": {"message": "hi"}}]
        loader.save(updated, store, "user-1")

        policies = loader.load(store=store)
        assert len(policies) == 1
        assert policies[0].metadata.priority == 500
        assert policies[0].metadata.description == "v2"
        assert [a.type for a in policies[0].spec.actions] == ["notify"]

    def test_requires_store_and_user(self, loader, store):
        with pytest.raises(AuthRequired):
            loader.save(make_policy())
        with pytest.raises(AuthRequired):
            loader.save(make_policy(), store, None)

    def test_invalid_document_rejected(self, loader, store):
        with pytest.raises(ConfigValidationError):
            loader.save({"apiVersion": "folio/v1", "metadata": {"id": "x"}}, store, "user-1")

    def test_storage_failure_raises(self, loader):
        with pytest.raises(StorageError):
            loader.save(make_policy(), broken_store(), "user-1")


# ── patch ─────────────────────────────────────────────────────────────────────

class TestPatch:
    def test_disable_hides_policy_from_load(self, loader, store):
        loader.save(make_policy("invoices"), store, "user-1")
        assert loader.patch("invoices", {"enabled": False}, store, "user-1") is True
        assert loader.load(store=store) == []

    def test_changes_only_allowed_fields(self, loader, store):
        loader.save(make_policy("invoices"), store, "user-1")
        loader.patch(
            "invoices",
            {"name": "Bills", "priority": 7, "tags": ["finance"], "spec": {"actions": []}},
            store,
            "user-1",
        )

        policy = loader.load(store=store)[0]
        assert policy.metadata.name == "Bills"
        assert policy.metadata.priority == 7
        assert policy.metadata.tags == ["finance"]
        assert len(policy.spec.actions) == 2

    def test_unset_fields_untouched(self, loader, store):
        loader.save(make_policy("invoices", priority=42, description="keep me"), store, "user-1")
        loader.patch("invoices", PolicyPatch(name="Renamed"), store, "user-1")

        policy = loader.load(store=store)[0]
        assert policy.metadata.priority == 42
        assert policy.metadata.description == "keep me"

    def test_missing_policy_raises_not_found(self, loader, store):
        with pytest.raises(NotFound):
            loader.patch("ghost", {"enabled": False}, store, "user-1")

    def test_other_users_policy_not_found(self, loader, store, isolated_db):
        other = StoreHandle(isolated_db, user_id="user-2")
        loader.save(make_policy("theirs"), other, "user-2")
        with pytest.raises(NotFound):
            loader.patch("theirs", {"enabled": False}, store, "user-1")

    def test_requires_auth(self, loader):
        with pytest.raises(AuthRequired):
            loader.patch("invoices", {"enabled": False})


# ── delete ────────────────────────────────────────────────────────────────────

class TestDelete:
    def test_delete_existing(self, loader, store):
        loader.save(make_policy("invoices"), store, "user-1")
        loader.load(store=store)
        assert loader.delete("invoices", store, "user-1") is True
        assert loader.load(store=store) == []

    def test_delete_missing_returns_false(self, loader, store):
        assert loader.delete("ghost", store, "user-1") is False

    def test_requires_auth(self, loader):
        with pytest.raises(AuthRequired):
            loader.delete("invoices")

    def test_storage_failure_raises(self, loader):
        with pytest.raises(StorageError):
            loader.delete("invoices", broken_store(), "user-1")


# ── validate ──────────────────────────────────────────────────────────────────

class TestValidate:
    def test_valid_document(self):
        assert PolicyLoader.validate(policy_doc()) is True

    def test_policy_instance(self):
        assert PolicyLoader.validate(make_policy()) is True

    def test_wrong_api_version(self):
        doc = policy_doc()
        doc["apiVersion"] = "folio/v2"
        assert PolicyLoader.validate(doc) is False

    def test_missing_priority(self):
        doc = policy_doc()
        del doc["metadata"]["priority"]
        assert PolicyLoader.validate(doc) is False

    def test_bool_priority_rejected(self):
        doc = policy_doc()
        doc["metadata"]["priority"] = True
        assert PolicyLoader.validate(doc) is False

    def test_missing_match_conditions(self):
        doc = policy_doc()
        del doc["spec"]["match"]["conditions"]
        assert PolicyLoader.validate(doc) is False

    @pytest.mark.parametrize("candidate", [None, "policy", 42, [], {"metadata": "x"}])
    def test_non_documents(self, candidate):
        assert PolicyLoader.validate(candidate) is False
