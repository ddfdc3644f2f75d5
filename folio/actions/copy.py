"""
CopyAction: copy the file to a local directory, or to remote storage.

Config:
    destination (required) - target directory, interpolated. A value starting
                             with the remote scheme (FOLIO_REMOTE_SCHEME,
                             "gdrive://" by default) is uploaded instead; the
                             rest of the string is the remote folder reference.
                             Policies written before copy_to_remote existed
                             rely on this.
    filename    (optional) - filename directive for the copy
    pattern     (optional) - older policies' filename template, used only when
                             no filename directive is set

The original file stays where it is, so no new_file_state is returned.
"""
import os
import shutil

from folio.actions.base import ActionHandler, ensure_target_free
from folio.actions.copy_to_remote import upload_to_remote
from folio.filenames import resolve_filename, split_name
from folio.models import ActionContext, ActionResult, ActionType, TraceEvent
from folio.remote_storage import RemoteStorage
from folio.variables import interpolate, pick_string


class CopyAction(ActionHandler):
    kind = ActionType.COPY
    label = "Copy"

    def __init__(self, remote_storage: RemoteStorage | None = None, remote_scheme: str = "gdrive://", **kwargs):
        super().__init__(**kwargs)
        self._remote_storage = remote_storage
        self._remote_scheme = remote_scheme

    def run(self, context: ActionContext) -> ActionResult:
        destination = self.require(context, "destination")
        dest_dir = interpolate(destination, context.variables, context.data)

        if dest_dir.startswith(self._remote_scheme):
            folder_ref = dest_dir[len(self._remote_scheme):] or None
            return upload_to_remote(self, self._remote_storage, context, folder_ref)

        os.makedirs(dest_dir, exist_ok=True)
        new_name = self._copy_name(context)
        new_path = os.path.join(dest_dir, new_name)
        ensure_target_free(context.file.path, new_path)
        shutil.copyfile(context.file.path, new_path)

        return ActionResult(
            success=True,
            logs=[f"Copied to '{new_path}'"],
            trace=[TraceEvent(
                step=f"Copied file to {new_path}",
                details={"original": context.file.path, "copy": new_path, "destination": dest_dir},
            )],
            outputs={"provider": "local", "path": new_path},
        )

    def _copy_name(self, context: ActionContext) -> str:
        stem, ext = split_name(context.file.name)
        filename_mode = pick_string(context.action, "filename")
        if filename_mode:
            return resolve_filename(filename_mode, context.variables, stem, ext, context.data)

        pattern = pick_string(context.action, "pattern")
        if pattern:
            new_name = interpolate(pattern, context.variables, context.data)
            return new_name if new_name.endswith(ext) else new_name + ext

        return context.file.name
