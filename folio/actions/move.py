"""MoveAction: move the file into another directory, keeping its name."""
import os
import shutil

from folio.actions.base import ActionHandler
from folio.models import ActionContext, ActionResult, ActionType
from folio.variables import interpolate


class MoveAction(ActionHandler):
    kind = ActionType.MOVE
    label = "Move"

    def run(self, context: ActionContext) -> ActionResult:
        destination = self.require(context, "destination")
        dest_dir = interpolate(destination, context.variables, context.data)
        os.makedirs(dest_dir, exist_ok=True)
        new_path = os.path.join(dest_dir, context.file.name)
        # shutil.move falls back to copy+delete across filesystems.
        return self.move_file(context, new_path, context.file.name, "Moved file to", mover=shutil.move)
