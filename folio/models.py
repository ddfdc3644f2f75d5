"""
Folio core data models.

Every object that flows through the policy registry and the action pipeline is
a Pydantic model. Two groups live here:

Persisted definitions
    Policy (+ metadata, match spec, extract fields, actions), PolicyPatch,
    BaselineField, BaselineConfig. These round-trip through the database as
    JSON and are validated on the way back out.

Per-run values
    FileState, TraceEvent, ActionContext, ActionResult, PipelineResult.
    Created for one document's pipeline run and thrown away afterwards; only
    the trace and the final file state outlive the run.

ActionContext is frozen. Handlers read it and return an explicit
new_file_state / outputs delta in their ActionResult; the pipeline builds the
next context with model_copy(). A handler can never reach into another
handler's state.

Data flow through one ActionPipeline.run() call:

    extracted data + extract fields  -> derive_variables() -> variables
    ActionContext(file, variables)   -> handler.execute()  -> ActionResult
    ActionResult.new_file_state      -> next ActionContext.file
    ActionResult.outputs             -> next ActionContext.outputs / variables
    every ActionResult.trace         -> PipelineResult.trace
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


API_VERSION = "folio/v1"

ExtractedData = dict[str, Any]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── policy definitions ────────────────────────────────────────────────────────

class MatchCondition(BaseModel):
    """
    One match condition. Folio stores these but never scores them; the
    upstream matcher decides whether a policy applies to a document.
    """
    type: Literal["keyword", "llm_verify", "semantic", "filename", "file_type", "mime_type"]
    value: str | list[str] | None = None
    prompt: str | None = None
    confidence_threshold: float | None = None
    case_sensitive: bool | None = None


class MatchSpec(BaseModel):
    strategy: Literal["ALL", "ANY"]
    conditions: list[MatchCondition]


class Transformer(BaseModel):
    """A named derivation that writes an extra variable, e.g. {"name": "get_year", "as": "year"}."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    # "as" is a keyword, so the attribute is as_ and the wire name is "as".
    as_: str = Field(alias="as")


class ExtractField(BaseModel):
    key: str
    type: Literal["string", "currency", "date", "number"] = "string"
    description: str = ""
    required: bool = False
    format: str | None = None
    transformers: list[Transformer] | None = None


class ActionType(str, Enum):
    """Closed set of action kinds the pipeline knows how to dispatch."""
    RENAME = "rename"
    AUTO_RENAME = "auto_rename"
    MOVE = "move"
    COPY = "copy"
    COPY_TO_REMOTE = "copy_to_remote"
    LOG_CSV = "log_csv"
    NOTIFY = "notify"
    WEBHOOK = "webhook"
    APPEND_TO_SHEET = "append_to_sheet"


# Action type strings written by older policy editors.
LEGACY_ACTION_ALIASES = {
    "copy_to_gdrive": ActionType.COPY_TO_REMOTE,
    "append_to_google_sheet": ActionType.APPEND_TO_SHEET,
}


class PolicyAction(BaseModel):
    """
    One step in a policy's action list.

    New-style actions keep their settings in `config`. Older policies put the
    same keys (pattern, destination, filename, path, columns, message, url,
    payload) directly on the action object; extra="allow" keeps those so
    pick_string() can fall back to them.
    """
    model_config = ConfigDict(extra="allow")

    type: str
    config: dict[str, Any] = Field(default_factory=dict)

    @property
    def kind(self) -> ActionType | None:
        """The ActionType for this action, or None if the type string is unknown."""
        if self.type in LEGACY_ACTION_ALIASES:
            return LEGACY_ACTION_ALIASES[self.type]
        try:
            return ActionType(self.type)
        except ValueError:
            return None

    def legacy_value(self, key: str) -> Any:
        return (self.model_extra or {}).get(key)


class PolicyMetadata(BaseModel):
    id: str
    name: str = ""
    version: str = "1.0.0"
    description: str = ""
    # Higher priority runs first.
    priority: int = 100
    tags: list[str] = Field(default_factory=list)
    enabled: bool = True


class PolicySpec(BaseModel):
    match: MatchSpec
    extract: list[ExtractField] = Field(default_factory=list)
    actions: list[PolicyAction] = Field(default_factory=list)


class Policy(BaseModel):
    """
    A user-defined rule: match conditions + fields to extract + ordered actions.

    Serialises with camelCase "apiVersion" (by_alias=True) so stored and
    exported policies keep the folio/v1 document shape.
    """
    model_config = ConfigDict(populate_by_name=True)

    api_version: Literal["folio/v1"] = Field(alias="apiVersion")
    kind: Literal["Policy", "Splitter"] = "Policy"
    metadata: PolicyMetadata
    spec: PolicySpec


class PolicyPatch(BaseModel):
    """
    The only attributes a partial update may change. Anything else in the
    incoming payload is ignored; match/extract/actions change only via save().
    """
    enabled: bool | None = None
    name: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    priority: int | None = None


# ── field schema (versioned config) ───────────────────────────────────────────

class BaselineField(BaseModel):
    key: str
    type: Literal["string", "number", "date", "currency", "string[]"] = "string"
    description: str = ""
    enabled: bool = True
    # Default fields can be disabled but never removed from a saved schema.
    is_default: bool = False


class BaselineConfig(BaseModel):
    """One immutable version of a user's extraction field schema."""
    id: str
    user_id: str
    version: int
    context: str | None = None
    fields: list[BaselineField]
    is_active: bool
    created_at: str


# ── per-run values ────────────────────────────────────────────────────────────

class FileState(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    name: str


class TraceEvent(BaseModel):
    timestamp: str = Field(default_factory=utc_now)
    step: str
    details: dict[str, Any] | None = None


class ActionContext(BaseModel):
    """
    Read-only input to one handler invocation.

    Fields:
        action       - the PolicyAction being executed
        data         - raw extracted data (used for path lookups not promoted to variables)
        file         - current file location; reflects every earlier rename/move in this run
        variables    - derived variables layered with earlier actions' outputs
        user_id      - owner of the document
        ingestion_id - durable ingestion record id
        store        - caller's StoreHandle, or None
        outputs      - combined outputs of every earlier action in this run
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    action: PolicyAction
    data: ExtractedData = Field(default_factory=dict)
    file: FileState
    variables: dict[str, str] = Field(default_factory=dict)
    user_id: str
    ingestion_id: str
    store: Any = None
    outputs: dict[str, Any] = Field(default_factory=dict)


class ActionResult(BaseModel):
    """
    Outcome of one handler invocation.

    new_file_state is set only by actions that move the file (rename,
    auto_rename, move). outputs carries values later actions can interpolate,
    e.g. the link returned by a remote upload.
    """
    success: bool
    new_file_state: FileState | None = None
    logs: list[str] = Field(default_factory=list)
    trace: list[TraceEvent] = Field(default_factory=list)
    outputs: dict[str, Any] | None = None
    error: str | None = None
    error_details: dict[str, Any] | None = None


class PipelineResult(BaseModel):
    """
    What the caller gets back from ActionPipeline.run().

    On failure, `file` is the last known good location (after any renames
    that succeeded before the failing step) and `trace` runs up to and
    including the failing action.
    """
    success: bool
    actions_executed: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    trace: list[TraceEvent] = Field(default_factory=list)
    file: FileState
    outputs: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    error_details: dict[str, Any] | None = None
    failed_action: str | None = None
