"""
BaselineConfigService: versioned extraction field schemas, one active per user.

Every save creates a new immutable row (version = previous max + 1). Older
versions are never edited; "rolling back" means activating an older version.

Active-version switching
-------------------------
Deactivate-all and activate-one run inside a single BEGIN IMMEDIATE
transaction, so concurrent readers never see zero or two active versions for
a user. The partial unique index on baseline_configs(user_id) WHERE
is_active = 1 backs this up at the storage layer.

Callers that only need the field list should use get_active_fields(), which
falls back to DEFAULT_BASELINE_FIELDS when the user has never saved a schema.
"""
import json
import logging
import sqlite3
import uuid

from pydantic import ValidationError

from folio.errors import AuthRequired, ConfigValidationError, StorageError
from folio.models import BaselineConfig, BaselineField

logger = logging.getLogger(__name__)


DEFAULT_BASELINE_FIELDS: list[BaselineField] = [
    BaselineField(
        key="document_type",
        type="string",
        description='Type of document (e.g. "invoice", "contract", "receipt", "report", "statement")',
        is_default=True,
    ),
    BaselineField(
        key="issuer",
        type="string",
        description="Person or organisation that sent or issued the document",
        is_default=True,
    ),
    BaselineField(
        key="recipient",
        type="string",
        description="Person or organisation the document is addressed to",
        is_default=True,
    ),
    BaselineField(
        key="date",
        type="date",
        description="Primary date on the document in ISO 8601 format (YYYY-MM-DD)",
        is_default=True,
    ),
    BaselineField(
        key="amount",
        type="currency",
        description="Primary monetary value if present (numeric, no currency symbol)",
        is_default=True,
    ),
    BaselineField(
        key="currency",
        type="string",
        description='Three-letter currency code if present (e.g. "USD", "EUR", "GBP")',
        is_default=True,
    ),
    BaselineField(
        key="subject",
        type="string",
        description="One-sentence description of what this document is about",
        is_default=True,
    ),
    BaselineField(
        key="tags",
        type="string[]",
        description='Semantic labels that describe this document (e.g. ["subscription", "renewal", "tax"])',
        is_default=True,
    ),
    BaselineField(
        key="suggested_filename",
        type="string",
        description=(
            "A descriptive, concise filename for this document in the format "
            "YYYY-MM-DD_Issuer_DocType. No file extension. Omit the date if missing."
        ),
        is_default=True,
    ),
]

DEFAULT_FIELD_KEYS = frozenset(field.key for field in DEFAULT_BASELINE_FIELDS)


def row_to_config(row) -> BaselineConfig:
    return BaselineConfig(
        id=row["id"],
        user_id=row["user_id"],
        version=row["version"],
        context=row["context"],
        fields=json.loads(row["fields"]),
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
    )


def validate_fields(fields) -> list[BaselineField]:
    """
    Coerce and check a field list before it is saved.

    Raises:
        ConfigValidationError - empty list, malformed field, duplicate key,
                                or a default field missing from the list
    """
    if not fields:
        raise ConfigValidationError("Field schema must contain at least one field")
    try:
        parsed = [f if isinstance(f, BaselineField) else BaselineField.model_validate(f) for f in fields]
    except ValidationError as e:
        raise ConfigValidationError(f"Invalid field definition: {e}") from e

    keys = [f.key for f in parsed]
    duplicates = sorted({k for k in keys if keys.count(k) > 1})
    if duplicates:
        raise ConfigValidationError(f"Duplicate field keys: {', '.join(duplicates)}")

    # Default fields may be disabled, not removed.
    missing = sorted(DEFAULT_FIELD_KEYS - set(keys))
    if missing:
        raise ConfigValidationError(f"Default fields cannot be removed: {', '.join(missing)}")
    return parsed


class BaselineConfigService:
    """
    All methods take the caller's StoreHandle and the owning user id.

    Example:
        service = BaselineConfigService()
        config = service.save(store, user_id, fields, context="Freelance invoices")
        fields = service.get_active_fields(store, user_id)
    """

    def get_active(self, store, user_id: str) -> BaselineConfig | None:
        """Return the active config, or None if there is none or the read fails."""
        if store is None or not user_id:
            return None
        try:
            with store.connect() as conn:
                row = conn.execute(
                    "SELECT * FROM baseline_configs WHERE user_id = ? AND is_active = 1",
                    (user_id,),
                ).fetchone()
            return row_to_config(row) if row is not None else None
        except (sqlite3.Error, ValueError) as e:
            logger.warning("Failed to fetch active baseline config for %s: %s", user_id, e)
            return None

    def get_active_fields(self, store, user_id: str) -> list[BaselineField]:
        active = self.get_active(store, user_id)
        if active is None:
            return [field.model_copy() for field in DEFAULT_BASELINE_FIELDS]
        return active.fields

    def save(
        self,
        store,
        user_id: str,
        fields: list[BaselineField] | list[dict],
        context: str | None = None,
        activate: bool = True,
    ) -> BaselineConfig:
        """
        Save a new immutable version.

        Args:
            fields   - full field list; every default field key must be present
            context  - free-text description of the user's documents
            activate - make the new version the active one

        Raises:
            AuthRequired          - no store or user_id
            ConfigValidationError - invalid field list
            StorageError          - the write failed
        """
        if store is None or not user_id:
            raise AuthRequired("Authentication required to save configs")
        parsed = validate_fields(fields)
        config_id = str(uuid.uuid4())

        try:
            with store.connect() as conn:
                # Take the write lock before reading max(version).
                conn.execute("BEGIN IMMEDIATE")
                latest = conn.execute(
                    "SELECT MAX(version) AS version FROM baseline_configs WHERE user_id = ?",
                    (user_id,),
                ).fetchone()
                version = (latest["version"] or 0) + 1

                if activate:
                    conn.execute(
                        "UPDATE baseline_configs SET is_active = 0 WHERE user_id = ? AND is_active = 1",
                        (user_id,),
                    )
                conn.execute(
                    """INSERT INTO baseline_configs (id, user_id, version, context, fields, is_active)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        config_id,
                        user_id,
                        version,
                        context,
                        json.dumps([f.model_dump() for f in parsed]),
                        int(activate),
                    ),
                )
                row = conn.execute("SELECT * FROM baseline_configs WHERE id = ?", (config_id,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to save baseline config: {e}") from e

        logger.info("Saved baseline config v%d for user %s (active: %s)", version, user_id, activate)
        return row_to_config(row)

    def activate(self, store, user_id: str, config_id: str) -> bool:
        """
        Make `config_id` the user's only active version.

        Returns:
            bool - False if the config does not exist or belongs to someone else

        Raises:
            AuthRequired - no store or user_id
            StorageError - the switch failed; the previous active version is kept
        """
        if store is None or not user_id:
            raise AuthRequired("Authentication required to activate configs")
        try:
            with store.connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                target = conn.execute(
                    "SELECT id, version FROM baseline_configs WHERE id = ? AND user_id = ?",
                    (config_id, user_id),
                ).fetchone()
                if target is None:
                    return False
                conn.execute(
                    "UPDATE baseline_configs SET is_active = 0 WHERE user_id = ? AND is_active = 1",
                    (user_id,),
                )
                conn.execute(
                    "UPDATE baseline_configs SET is_active = 1 WHERE id = ? AND user_id = ?",
                    (config_id, user_id),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to activate baseline config: {e}") from e

        logger.info("Activated baseline config v%d for user %s", target["version"], user_id)
        return True

    def list(self, store, user_id: str) -> list[BaselineConfig]:
        """
        All saved versions for a user, newest first.

        Raises:
            AuthRequired - no store or user_id
            StorageError - the read failed
        """
        if store is None or not user_id:
            raise AuthRequired("Authentication required to list configs")
        try:
            with store.connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM baseline_configs WHERE user_id = ? ORDER BY version DESC",
                    (user_id,),
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list baseline configs: {e}") from e
        return [row_to_config(row) for row in rows]
