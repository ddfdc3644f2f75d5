"""
Remote storage upload interface.

Copy and copy_to_remote actions hand files to an object implementing
RemoteStorage. Folio does not ship a provider; the host application wires one
in (Google Drive, S3, ...) when it builds the ActionPipeline.

Contract: upload() never raises for provider-side failures. It returns
UploadResult(success=False, error=...) and the calling action turns that into
a pipeline-stopping failure.
"""
from typing import Protocol

from pydantic import BaseModel


class UploadResult(BaseModel):
    success: bool
    file_id: str | None = None
    # Shareable URL for the uploaded file, when the provider returns one.
    link: str | None = None
    error: str | None = None


class RemoteStorage(Protocol):
    # Name reported in action outputs as "provider".
    provider: str

    def upload(
        self,
        user_id: str,
        local_path: str,
        folder_ref: str | None = None,
        store=None,
        desired_name: str | None = None,
    ) -> UploadResult:
        ...
