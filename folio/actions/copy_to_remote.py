"""
Remote-storage upload: CopyToRemoteAction and the upload step shared with CopyAction.

Config:
    destination (optional) - remote folder reference, interpolated
    filename    (optional) - filename directive ("original", "auto", or a template)

Outputs (available to later actions as variables):
    provider - RemoteStorage.provider, e.g. "gdrive"
    file_id  - id the provider assigned to the upload
    link     - shareable URL, when the provider returns one

A non-success UploadResult fails the action and stops the pipeline.
"""
from folio.actions.base import ActionHandler
from folio.errors import IOFailure
from folio.filenames import resolve_filename, split_name
from folio.models import ActionContext, ActionResult, ActionType, TraceEvent
from folio.remote_storage import RemoteStorage
from folio.variables import interpolate, pick_string


def upload_to_remote(
    handler: ActionHandler,
    remote_storage: RemoteStorage | None,
    context: ActionContext,
    folder_ref: str | None,
) -> ActionResult:
    """
    Upload context.file to remote storage on behalf of `handler`.

    Raises:
        IOFailure - no remote storage backend is configured
    """
    if remote_storage is None:
        raise IOFailure("Remote storage is not configured")

    desired_name = None
    filename_mode = pick_string(context.action, "filename")
    if filename_mode:
        stem, ext = split_name(context.file.name)
        desired_name = resolve_filename(filename_mode, context.variables, stem, ext, context.data)

    upload = remote_storage.upload(
        context.user_id, context.file.path, folder_ref, context.store, desired_name,
    )
    if not upload.success:
        return handler.failure(
            "Copy to remote storage failed",
            upload.error or "Failed to upload to remote storage",
            {"provider": remote_storage.provider, "destination": folder_ref},
        )

    outputs = {"provider": remote_storage.provider, "file_id": upload.file_id}
    if upload.link:
        outputs["link"] = upload.link
    return ActionResult(
        success=True,
        logs=[f"Copied to {remote_storage.provider} (ID: {upload.file_id})"],
        trace=[TraceEvent(
            step=f"Copied file to {remote_storage.provider}",
            details={
                "original": context.file.path,
                "file_id": upload.file_id,
                "destination": folder_ref,
                "name": desired_name,
            },
        )],
        outputs=outputs,
    )


class CopyToRemoteAction(ActionHandler):
    kind = ActionType.COPY_TO_REMOTE
    label = "Copy to remote storage"

    def __init__(self, remote_storage: RemoteStorage | None = None, **kwargs):
        super().__init__(**kwargs)
        self._remote_storage = remote_storage

    def run(self, context: ActionContext) -> ActionResult:
        destination = pick_string(context.action, "destination")
        folder_ref = interpolate(destination, context.variables, context.data) if destination else None
        return upload_to_remote(self, self._remote_storage, context, folder_ref)
