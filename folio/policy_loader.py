"""
PolicyLoader: the policy registry.

Reads are cached and availability-first; writes are uncached and
correctness-first.

Read path (load)
-----------------
Returns the user's enabled policies, highest priority first, from a
PolicyCache snapshot that lives for a fixed TTL (30 s by default). Without a
store handle it returns [] instead of failing: "no policies" and "not
authenticated" look the same to the caller. A database or decoding error is
logged and also returns [].

Write path (save / patch / delete)
-----------------------------------
Requires a store handle and an owner id (AuthRequired otherwise). Storage
errors are raised as StorageError. Every successful write invalidates the
whole cache before returning, so the next load() on any thread reads fresh
rows.

The cache is injected; each loader can own its own:

    loader = PolicyLoader(cache=PolicyCache(ttl=5))
"""
import json
import logging
import sqlite3
import threading
import time

from pydantic import ValidationError

from folio.config import get_settings
from folio.errors import AuthRequired, ConfigValidationError, NotFound, StorageError, TransientReadFailure
from folio.models import API_VERSION, Policy, PolicyPatch

logger = logging.getLogger(__name__)


class PolicyCache:
    """
    Per-user policy snapshots with a fixed time-to-live. Thread-safe.

    Args:
        ttl   - seconds a snapshot stays valid
        clock - monotonic time source; injectable for tests
    """

    def __init__(self, ttl: float = 30.0, clock=time.monotonic):
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[list[Policy], float]] = {}
        # Bumped by every invalidate(); set() drops snapshots fetched before the bump.
        self._generation = 0
        self._lock = threading.Lock()

    def get(self, user_id: str) -> list[Policy] | None:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            policies, loaded_at = entry
            if self._clock() - loaded_at >= self._ttl:
                del self._entries[user_id]
                return None
            return list(policies)

    def generation(self) -> int:
        with self._lock:
            return self._generation

    def set(self, user_id: str, policies: list[Policy], generation: int | None = None) -> bool:
        """Store a snapshot; returns False if an invalidation happened since `generation`."""
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries[user_id] = (list(policies), self._clock())
            return True

    def invalidate(self, user_id: str | None = None) -> None:
        with self._lock:
            self._generation += 1
            if user_id is None:
                self._entries.clear()
            else:
                self._entries.pop(user_id, None)


def row_to_policy(row) -> Policy:
    """Rebuild a Policy from a policies row; the row's columns win over stored metadata."""
    metadata = json.loads(row["metadata"])
    metadata.update(
        id=row["policy_id"],
        priority=row["priority"],
        enabled=bool(row["enabled"]),
    )
    return Policy.model_validate({
        "apiVersion": row["api_version"] or API_VERSION,
        "kind": row["kind"] or "Policy",
        "metadata": metadata,
        "spec": json.loads(row["spec"]),
    })


class PolicyLoader:

    def __init__(self, cache: PolicyCache | None = None):
        self._cache = cache if cache is not None else PolicyCache(ttl=get_settings().policy_cache_ttl)

    # ── read path ─────────────────────────────────────────────────────────────

    def load(self, force_refresh: bool = False, store=None) -> list[Policy]:
        """
        Load the store user's enabled policies, highest priority first.

        Args:
            force_refresh - bypass the cached snapshot
            store         - caller's StoreHandle; None returns []

        Returns:
            list[Policy] - [] when unauthenticated or when the read fails
        """
        if store is None:
            logger.info("No store handle, policies require authentication")
            return []

        user_id = store.user_id
        if not user_id:
            logger.info("Store handle has no user, policies require authentication")
            return []

        if not force_refresh:
            cached = self._cache.get(user_id)
            if cached is not None:
                return cached

        generation = self._cache.generation()
        try:
            policies = self._fetch_enabled(store, user_id)
        except TransientReadFailure as e:
            logger.error("Failed to load policies from DB: %s", e)
            return []

        if not self._cache.set(user_id, policies, generation):
            logger.debug("Policies for %s changed during load, snapshot not cached", user_id)
        logger.info("Loaded %d policies from DB for user %s", len(policies), user_id)
        return policies

    def _fetch_enabled(self, store, user_id: str) -> list[Policy]:
        try:
            with store.connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM policies WHERE user_id = ? AND enabled = 1 "
                    "ORDER BY priority DESC, policy_id",
                    (user_id,),
                ).fetchall()
            return [row_to_policy(row) for row in rows]
        except (sqlite3.Error, ValueError) as e:
            # ValueError covers bad JSON and pydantic ValidationError on malformed rows.
            raise TransientReadFailure(str(e)) from e

    def invalidate_cache(self, user_id: str | None = None) -> None:
        self._cache.invalidate(user_id)

    @staticmethod
    def validate(candidate) -> bool:
        """
        Well-formedness check for a policy document. No side effects.

        Requires apiVersion "folio/v1", a string metadata.id, an integer
        metadata.priority, and a match spec with a strategy and a conditions
        list; everything else must also pass model validation.
        """
        if isinstance(candidate, Policy):
            return True
        if not isinstance(candidate, dict):
            return False
        metadata = candidate.get("metadata")
        if not isinstance(metadata, dict):
            return False
        priority = metadata.get("priority")
        if isinstance(priority, bool) or not isinstance(priority, int):
            return False
        if candidate.get("apiVersion") != API_VERSION:
            return False
        try:
            Policy.model_validate(candidate)
        except ValidationError:
            return False
        return True

    # ── write path ────────────────────────────────────────────────────────────

    def save(self, policy: Policy | dict, store=None, user_id: str | None = None) -> str:
        """
        Upsert a policy keyed by (user_id, metadata.id).

        A resubmission with the same id replaces metadata, match, extract and
        actions in one statement.

        Returns:
            str - location token "db:policies/<id>"

        Raises:
            AuthRequired          - no store or user_id
            ConfigValidationError - policy is not a valid policy document
            StorageError          - the write failed
        """
        if store is None or not user_id:
            raise AuthRequired("Authentication required to save policies")
        if not isinstance(policy, Policy):
            try:
                policy = Policy.model_validate(policy)
            except ValidationError as e:
                raise ConfigValidationError(f"Invalid policy: {e}") from e

        metadata = policy.metadata
        try:
            with store.connect() as conn:
                conn.execute(
                    """INSERT INTO policies
                       (user_id, policy_id, api_version, kind, metadata, spec, enabled, priority)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT (user_id, policy_id) DO UPDATE SET
                           api_version = excluded.api_version,
                           kind        = excluded.kind,
                           metadata    = excluded.metadata,
                           spec        = excluded.spec,
                           enabled     = excluded.enabled,
                           priority    = excluded.priority,
                           updated_at  = datetime('now')""",
                    (
                        user_id,
                        metadata.id,
                        policy.api_version,
                        policy.kind,
                        json.dumps(metadata.model_dump()),
                        json.dumps(policy.spec.model_dump(by_alias=True, exclude_none=True)),
                        int(metadata.enabled),
                        metadata.priority,
                    ),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save policy: {e}") from e

        self.invalidate_cache()
        logger.info("Saved policy to DB: %s", metadata.id)
        return f"db:policies/{metadata.id}"

    def patch(self, policy_id: str, partial: PolicyPatch | dict, store=None, user_id: str | None = None) -> bool:
        """
        Change only enabled / name / description / tags / priority.

        Keys outside that set are ignored; match, extract and actions are
        never touched by a patch.

        Raises:
            AuthRequired - no store or user_id
            NotFound     - no policy with this id for this user
            StorageError - the write failed
        """
        if store is None or not user_id:
            raise AuthRequired("Authentication required to update policies")
        changes = partial if isinstance(partial, PolicyPatch) else PolicyPatch.model_validate(partial)
        updates = changes.model_dump(exclude_unset=True, exclude_none=True)

        try:
            with store.connect() as conn:
                existing = conn.execute(
                    "SELECT metadata, priority, enabled FROM policies WHERE policy_id = ? AND user_id = ?",
                    (policy_id, user_id),
                ).fetchone()
                if existing is None:
                    raise NotFound(f"Policy not found: {policy_id}")

                metadata = json.loads(existing["metadata"])
                metadata.update(updates)
                conn.execute(
                    "UPDATE policies SET metadata = ?, enabled = ?, priority = ?, updated_at = datetime('now') "
                    "WHERE policy_id = ? AND user_id = ?",
                    (
                        json.dumps(metadata),
                        int(updates.get("enabled", bool(existing["enabled"]))),
                        updates.get("priority", existing["priority"]),
                        policy_id,
                        user_id,
                    ),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to patch policy: {e}") from e

        self.invalidate_cache()
        logger.info("Patched policy: %s", policy_id)
        return True

    def delete(self, policy_id: str, store=None, user_id: str | None = None) -> bool:
        """
        Delete a policy.

        Returns:
            bool - True if a row was deleted, False if none matched

        Raises:
            AuthRequired - no store or user_id
            StorageError - the delete failed
        """
        if store is None or not user_id:
            raise AuthRequired("Authentication required to delete policies")
        try:
            with store.connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM policies WHERE policy_id = ? AND user_id = ?",
                    (policy_id, user_id),
                )
                deleted = cursor.rowcount
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete policy: {e}") from e

        self.invalidate_cache()
        if deleted:
            logger.info("Deleted policy: %s", policy_id)
        return deleted > 0
