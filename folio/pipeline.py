"""
ActionPipeline: runs a policy's action list against one document.

This is the single object the ingestion flow calls once a policy has matched.
It owns the kind -> handler table and the collaborators handlers need (audit
sink, remote storage, spreadsheet store, Slack, elevated store).

Calling run() triggers the full loop:
    derive variables -> for each action: build context -> execute -> thread state -> result

Ordering
---------
Each step may depend on the file-state change of the previous one: a copy
after a rename must copy the renamed file, a webhook after an upload may
reference the upload's link. So actions are never parallelised within a run,
and state only flows forward.

Threading state between steps
------------------------------
Handlers get a frozen ActionContext and return an explicit delta:
  - new_file_state  -> becomes context.file for every later action
  - outputs         -> merged into one combined map, and layered over the
                       variables later actions interpolate against
The pipeline, not the handler, builds the next context.

Failure policy
---------------
The first failed action stops the run. Nothing already done is undone: a
rename that succeeded before a failed webhook stays renamed, and the result
reports the renamed location as the last known good file. The caller gets the
trace up to and including the failing step plus its error and details.

Independent documents may be run concurrently on separate threads; nothing
here is shared between runs except the injected collaborators.
"""
import logging
import os

from folio.actions.append_to_sheet import AppendToSheetAction
from folio.actions.base import ActionHandler
from folio.actions.copy import CopyAction
from folio.actions.copy_to_remote import CopyToRemoteAction
from folio.actions.log_csv import LogCsvAction
from folio.actions.move import MoveAction
from folio.actions.notify import NotifyAction
from folio.actions.rename import AutoRenameAction, RenameAction
from folio.actions.webhook import WebhookAction
from folio.audit import AuditSink
from folio.config import Settings, get_settings
from folio.connectors.slack import SlackConnector
from folio.db import get_service_store
from folio.models import (
    ActionContext,
    ActionResult,
    ActionType,
    ExtractedData,
    ExtractField,
    FileState,
    PipelineResult,
    Policy,
    PolicyAction,
    TraceEvent,
)
from folio.remote_storage import RemoteStorage
from folio.spreadsheet_store import SpreadsheetStore
from folio.variables import derive_variables, to_template_string

logger = logging.getLogger(__name__)


def build_handlers(
    audit: AuditSink,
    remote_storage: RemoteStorage | None = None,
    slack: SlackConnector | None = None,
    settings: Settings | None = None,
    service_store_factory=get_service_store,
    spreadsheet_store: SpreadsheetStore | None = None,
) -> dict[ActionType, ActionHandler]:
    """One handler instance per ActionType, sharing the same collaborators."""
    settings = settings or get_settings()
    common = {"audit": audit, "service_store_factory": service_store_factory}
    return {
        ActionType.RENAME: RenameAction(**common),
        ActionType.AUTO_RENAME: AutoRenameAction(**common),
        ActionType.MOVE: MoveAction(**common),
        ActionType.COPY: CopyAction(
            remote_storage=remote_storage, remote_scheme=settings.remote_scheme, **common,
        ),
        ActionType.COPY_TO_REMOTE: CopyToRemoteAction(remote_storage=remote_storage, **common),
        ActionType.LOG_CSV: LogCsvAction(**common),
        ActionType.NOTIFY: NotifyAction(slack=slack, **common),
        ActionType.WEBHOOK: WebhookAction(timeout=settings.webhook_timeout, **common),
        ActionType.APPEND_TO_SHEET: AppendToSheetAction(spreadsheet_store=spreadsheet_store, **common),
    }


class ActionPipeline:
    """
    Instantiate once per process with the collaborators, then call run() (or
    run_policy()) for each matched document.

    Example:
        pipeline = ActionPipeline(remote_storage=drive)
        result = pipeline.run_policy(
            policy,
            file_path="/inbox/scan_0042.pdf",
            data={"date": "2024-03-02", "issuer": "Acme Corp", "document_type": "invoice"},
            user_id=user_id,
            ingestion_id=ingestion_id,
            store=store,
        )
    """

    def __init__(
        self,
        handlers: dict[ActionType, ActionHandler] | None = None,
        audit: AuditSink | None = None,
        remote_storage: RemoteStorage | None = None,
        slack: SlackConnector | None = None,
        settings: Settings | None = None,
        service_store_factory=get_service_store,
        spreadsheet_store: SpreadsheetStore | None = None,
    ):
        """
        Args:
            handlers              - explicit kind -> handler table; built from the other
                                    arguments when omitted
            audit                 - audit sink shared by every handler
            remote_storage        - upload backend for copy_to_remote and remote copy destinations
            slack                 - Slack connector for notify actions with a channel; created
                                    from FOLIO_SLACK_TOKEN when omitted and the token is set
            settings              - defaults to get_settings()
            service_store_factory - returns the elevated store used to persist renames
            spreadsheet_store     - row-append backend for append_to_sheet actions
        """
        settings = settings or get_settings()
        if slack is None and settings.slack_token:
            slack = SlackConnector(token=settings.slack_token)
        self._handlers = handlers if handlers is not None else build_handlers(
            audit=audit if audit is not None else AuditSink(),
            remote_storage=remote_storage,
            slack=slack,
            settings=settings,
            service_store_factory=service_store_factory,
            spreadsheet_store=spreadsheet_store,
        )

    def run_policy(self, policy: Policy, file_path: str, data: ExtractedData, **kwargs) -> PipelineResult:
        """Run a matched policy's actions with its extract fields' transformers."""
        return self.run(file_path, policy.spec.actions, data, fields=policy.spec.extract, **kwargs)

    def run(
        self,
        file_path: str,
        actions: list[PolicyAction],
        data: ExtractedData,
        fields: list[ExtractField] | None = None,
        user_id: str = "",
        ingestion_id: str = "",
        store=None,
    ) -> PipelineResult:
        """
        Execute `actions` in order against the file at `file_path`.

        Args:
            file_path    - current location of the document
            actions      - the policy's action list, in declared order
            data         - extracted field values
            fields       - extract field definitions (for transformers)
            user_id      - owner of the document
            ingestion_id - durable ingestion record; renames are persisted to it
            store        - caller's StoreHandle, or None

        Returns:
            PipelineResult - success=False as soon as one action fails
        """
        trace = [TraceEvent(step="Initializing action pipeline", details={"actions_count": len(actions)})]
        executed: list[str] = []
        variables = derive_variables(data, fields or [])
        file = FileState(path=file_path, name=os.path.basename(file_path))
        outputs: dict = {}

        for action in actions:
            # 1. Build a fresh context from the state left by earlier actions
            context = ActionContext(
                action=action,
                data=data,
                file=file,
                variables={**variables, **_render_outputs(outputs)},
                user_id=user_id,
                ingestion_id=ingestion_id,
                store=store,
                outputs=dict(outputs),
            )

            # 2. Dispatch; unknown kinds and unexpected exceptions become failures
            result = self._dispatch(context)
            trace.extend(result.trace)

            # 3. Stop on the first failure; earlier side effects stay in place
            if not result.success:
                error = result.error or f"Action '{action.type}' failed"
                logger.error("Action '%s' failed for ingestion %s: %s", action.type, ingestion_id, error)
                return PipelineResult(
                    success=False,
                    actions_executed=executed,
                    errors=[f"{action.type}: {error}"],
                    trace=trace,
                    file=file,
                    outputs=outputs,
                    error=error,
                    error_details=result.error_details,
                    failed_action=action.type,
                )

            # 4. Thread the delta forward
            executed.extend(result.logs)
            if result.new_file_state is not None:
                file = result.new_file_state
            if result.outputs:
                outputs.update(result.outputs)

        return PipelineResult(
            success=True,
            actions_executed=executed,
            trace=trace,
            file=file,
            outputs=outputs,
        )

    def _dispatch(self, context: ActionContext) -> ActionResult:
        action = context.action
        handler = self._handlers.get(action.kind) if action.kind is not None else None
        if handler is None:
            error = f"Unsupported action type: {action.type}"
            return ActionResult(
                success=False,
                trace=[TraceEvent(step="Action failed", details={"type": action.type, "error": error})],
                error=error,
                error_details={"action": action.type, "error_type": "validation"},
            )
        try:
            return handler.execute(context)
        except Exception as e:
            logger.exception("Unexpected error in action '%s'", action.type)
            return ActionResult(
                success=False,
                trace=[TraceEvent(step="Action failed", details={"type": action.type, "error": str(e)})],
                error=str(e),
                error_details={"action": action.type, "exception": type(e).__name__},
            )


def _render_outputs(outputs: dict) -> dict[str, str]:
    rendered = {}
    for key, value in outputs.items():
        text = to_template_string(value)
        if text is not None:
            rendered[key] = text
    return rendered
