"""
Rename actions: RenameAction (explicit pattern) and AutoRenameAction (no config).

Both rename in place (same directory) with os.replace, record the new
path/name on the ingestion record, and return new_file_state so every later
action in the run sees the renamed file.

RenameAction
    config.pattern (required) - "{date}_{issuer}" style template; the original
    extension is appended if the rendered name doesn't already end with it.

AutoRenameAction
    Ignores config and resolves the name in "auto" mode:
    YYYY-MM-DD_Issuer_DocType[_Amount] -> suggested_filename -> original stem.
"""
import logging
import os

from folio.actions.base import ActionHandler
from folio.filenames import resolve_filename, split_name
from folio.models import ActionContext, ActionResult, ActionType
from folio.variables import interpolate

logger = logging.getLogger(__name__)


class RenameAction(ActionHandler):
    kind = ActionType.RENAME
    label = "Rename"

    def run(self, context: ActionContext) -> ActionResult:
        pattern = self.require(context, "pattern")
        _, ext = split_name(context.file.name)
        new_name = interpolate(pattern, context.variables, context.data)
        if not new_name.endswith(ext):
            new_name += ext
        new_path = os.path.join(os.path.dirname(context.file.path), new_name)
        return self.move_file(context, new_path, new_name, "Renamed file to")


class AutoRenameAction(ActionHandler):
    kind = ActionType.AUTO_RENAME
    label = "AutoRename"

    def run(self, context: ActionContext) -> ActionResult:
        variables = context.variables
        stem, ext = split_name(context.file.name)
        logger.info(
            "AutoRename variables: suggested_filename=%s date=%s issuer=%s document_type=%s",
            variables.get("suggested_filename", "(missing)"),
            variables.get("date", "(missing)"),
            variables.get("issuer", "(missing)"),
            variables.get("document_type", "(missing)"),
        )
        new_name = resolve_filename("auto", variables, stem, ext, context.data)
        new_path = os.path.join(os.path.dirname(context.file.path), new_name)
        logger.info("AutoRename: '%s' -> '%s'", context.file.name, new_name)
        return self.move_file(context, new_path, new_name, "Auto-renamed file to")
