"""
ActionHandler base class: the one contract every action kind implements.

    handler.execute(context: ActionContext) -> ActionResult

Subclasses implement run(). execute() wraps it so that every handler behaves
the same way at the edges:

Error handling pattern
-----------------------
ConfigValidationError (missing pattern/destination/message/url/payload,
invalid JSON) and OSError (filesystem, network, storage writes) never escape
execute(). Both become ActionResult(success=False) with a single trace event
and structured error_details, so the pipeline can stop and report.

Any other exception (a remote storage or Slack client bug, say) is logged with
its traceback and becomes a failure with error_type "unexpected", so the audit
event is still written.

Audit
------
execute() emits exactly one audit event per call, on success and on failure.
The event details are the last trace event's details plus the action kind and
outcome, so what the caller sees in the trace and what lands in
processing_events always agree.

File-moving helpers
--------------------
persist_location() writes a moved file's new path/name to the ingestion
record with the caller's store, or the elevated service store when the caller
has none. A persistence failure is logged and reported in the trace but does
not fail the action: the file has already moved, and the new location must
still reach the next action.
"""
import logging
import os

from folio.audit import AuditSink
from folio.db import get_service_store, update_ingestion_location
from folio.errors import ConfigValidationError, IOFailure, StorageError
from folio.models import ActionContext, ActionResult, ActionType, FileState, TraceEvent
from folio.variables import pick_string

logger = logging.getLogger(__name__)


def ensure_target_free(source: str, target: str) -> None:
    """
    Raise IOFailure if `target` exists and is a different file from `source`.

    Renames, moves and copies never overwrite another document.
    """
    if not os.path.exists(target):
        return
    if os.path.exists(source) and os.path.samefile(source, target):
        return
    raise IOFailure(f"Target already exists: {target}")


class ActionHandler:
    """
    Args:
        audit                 - sink for per-action audit events
        service_store_factory - returns the elevated store (or None); only file-moving
                                actions call it, and only when the caller has no store
    """

    kind: ActionType
    label: str = "Action"

    def __init__(self, audit: AuditSink | None = None, service_store_factory=get_service_store):
        self._audit = audit if audit is not None else AuditSink()
        self._service_store_factory = service_store_factory

    def run(self, context: ActionContext) -> ActionResult:
        raise NotImplementedError

    def execute(self, context: ActionContext) -> ActionResult:
        try:
            result = self.run(context)
        except ConfigValidationError as e:
            result = self.failure(
                e.step or f"{self.label} failed",
                str(e),
                {"error_type": "validation"},
            )
        except OSError as e:
            logger.error("%s action failed for ingestion %s: %s", self.label, context.ingestion_id, e)
            result = self.failure(
                f"{self.label} failed",
                str(e),
                {"error_type": "io", "exception": type(e).__name__},
            )
        except Exception as e:
            logger.exception("Unexpected error in %s action for ingestion %s", self.label, context.ingestion_id)
            result = self.failure(
                f"{self.label} failed",
                str(e),
                {"error_type": "unexpected", "exception": type(e).__name__},
            )
        self._emit_audit(context, result)
        return result

    # ── helpers for subclasses ────────────────────────────────────────────────

    def require(self, context: ActionContext, key: str) -> str:
        """Return a required string setting or raise ConfigValidationError."""
        value = pick_string(context.action, key)
        if value is None:
            raise ConfigValidationError(
                f"{self.label} action requires a '{key}' config",
                step=f"{self.label} failed: missing {key}",
            )
        return value

    def failure(self, step: str, error: str, details: dict | None = None) -> ActionResult:
        details = {"action": self.kind.value, **(details or {})}
        return ActionResult(
            success=False,
            trace=[TraceEvent(step=step, details={**details, "error": error})],
            error=error,
            error_details=details,
        )

    def persist_location(self, context: ActionContext, new_path: str, new_name: str) -> bool:
        store = context.store if context.store is not None else self._service_store_factory()
        if store is None:
            logger.warning(
                "No store available to record new location of ingestion %s", context.ingestion_id,
            )
            return False
        try:
            return update_ingestion_location(store, context.ingestion_id, new_path, new_name)
        except StorageError as e:
            logger.error("%s", e)
            return False

    def move_file(self, context: ActionContext, new_path: str, new_name: str, step: str, mover=os.replace) -> ActionResult:
        """Rename/move the current file, record it durably, and report the new state."""
        original = context.file
        ensure_target_free(original.path, new_path)
        mover(original.path, new_path)
        persisted = self.persist_location(context, new_path, new_name)
        return ActionResult(
            success=True,
            new_file_state=FileState(path=new_path, name=new_name),
            logs=[f"{step} '{new_name}'"],
            trace=[TraceEvent(
                step=f"{step} {new_name}",
                details={"original": original.name, "new": new_name, "path": new_path, "persisted": persisted},
            )],
            outputs={"renamed_to": new_name, "file_path": new_path},
        )

    # ── audit ─────────────────────────────────────────────────────────────────

    def _emit_audit(self, context: ActionContext, result: ActionResult) -> None:
        details = dict(result.trace[-1].details or {}) if result.trace else {}
        details["action"] = self.kind.value
        details["outcome"] = "success" if result.success else "failure"
        self._audit.log_event(
            context.ingestion_id,
            context.user_id,
            "action" if result.success else "error",
            "Action Execution",
            details,
            context.store,
        )
