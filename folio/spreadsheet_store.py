"""
Spreadsheet append interface.

The append_to_sheet action writes one row per document through an object
implementing SpreadsheetStore. As with RemoteStorage, folio ships no provider;
the host application wires one in (Google Sheets, ...) when it builds the
ActionPipeline.

Contract: neither method raises for provider-side failures. Both return a
result with success=False, an error message and optional error_details
(provider status codes, remediation hints), which the action passes through
unchanged.
"""
from typing import Any, Protocol

from pydantic import BaseModel, Field


class SheetTemplate(BaseModel):
    success: bool
    spreadsheet_id: str | None = None
    # Range the header row was read from; rows are appended to the same range.
    range: str | None = None
    headers: list[str] = Field(default_factory=list)
    error: str | None = None
    error_details: dict[str, Any] | None = None


class AppendResult(BaseModel):
    success: bool
    spreadsheet_id: str | None = None
    range: str | None = None
    error: str | None = None
    error_details: dict[str, Any] | None = None


class SpreadsheetStore(Protocol):
    # Name reported in action outputs as "provider".
    provider: str

    def resolve_template(
        self,
        user_id: str,
        spreadsheet_ref: str,
        range: str | None = None,
        store=None,
    ) -> SheetTemplate:
        """Read the header row of the target sheet. spreadsheet_ref is an id or a full URL."""
        ...

    def append_row(
        self,
        user_id: str,
        spreadsheet_ref: str,
        range: str | None,
        values: list[str],
        store=None,
    ) -> AppendResult:
        ...
