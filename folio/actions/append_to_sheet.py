"""
AppendToSheetAction: append one row per document to a spreadsheet.

Config:
    spreadsheet_id  (required*) - spreadsheet id or full URL
    spreadsheet_url (required*) - alternative key; *one of the two must be set
    range           (optional)  - target range, e.g. "Invoices!A1"; the
                                  provider picks the first tab when omitted
    columns         (optional)  - list or comma-separated string of templates,
                                  one per cell

With explicit columns each template is interpolated in order. Without them
the sheet's header row is the template: each header is matched to a variable
by exact name, then by normalized name ("Invoice Date" -> invoice_date), then
through HEADER_ALIASES ("Vendor" -> issuer). A sheet with no header row, or
one where no header maps to anything, fails the action rather than append a
blank row.

Provider failures carry their error_details through to the action result.
"""
import re

from folio.actions.base import ActionHandler
from folio.errors import ConfigValidationError, IOFailure
from folio.models import ActionContext, ActionResult, ActionType, TraceEvent
from folio.spreadsheet_store import SpreadsheetStore
from folio.variables import interpolate, pick_columns, pick_string

# Normalized header -> variable names to try, in order.
HEADER_ALIASES: dict[str, list[str]] = {
    "amount": ["total_amount", "amount", "amount_due"],
    "total": ["total_amount", "amount", "amount_due"],
    "total_amount": ["amount", "amount_due"],
    "vendor": ["issuer", "merchant", "store_name", "seller"],
    "merchant": ["issuer", "vendor", "store_name", "seller"],
    "supplier": ["issuer", "vendor", "merchant"],
    "store": ["issuer", "vendor", "merchant", "store_name"],
    "document": ["document_type"],
    "type": ["document_type"],
    "category": ["document_type"],
    "issued_on": ["date"],
    "invoice_date": ["date"],
    "receipt_date": ["date"],
}

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_key(value: str) -> str:
    return _NON_ALNUM.sub("_", value.lower()).strip("_")


def normalized_lookup(variables: dict[str, str]) -> dict[str, str]:
    """Variables keyed by normalized name; the first key to normalize to a name wins."""
    lookup: dict[str, str] = {}
    for key, value in variables.items():
        normalized = normalize_key(key)
        if normalized and normalized not in lookup:
            lookup[normalized] = value
    return lookup


def resolve_header_value(header: str, variables: dict[str, str], normalized: dict[str, str]) -> str:
    """Cell value for one header column, or "" when nothing matches."""
    name = header.strip()
    if not name:
        return ""
    if name in variables:
        return variables[name]

    key = normalize_key(name)
    if not key:
        return ""
    if key in normalized:
        return normalized[key]
    for alias in HEADER_ALIASES.get(key, []):
        if alias in normalized:
            return normalized[alias]
    return ""


class AppendToSheetAction(ActionHandler):
    kind = ActionType.APPEND_TO_SHEET
    label = "Append to sheet"

    def __init__(self, spreadsheet_store: SpreadsheetStore | None = None, **kwargs):
        super().__init__(**kwargs)
        self._sheets = spreadsheet_store

    def run(self, context: ActionContext) -> ActionResult:
        reference = pick_string(context.action, "spreadsheet_id") or pick_string(context.action, "spreadsheet_url")
        if reference is None:
            raise ConfigValidationError(
                f"{self.label} action requires a 'spreadsheet_id' config",
                step=f"{self.label} failed: missing spreadsheet_id",
            )
        if self._sheets is None:
            raise IOFailure("Spreadsheet store is not configured")

        configured_range = pick_string(context.action, "range")
        templates = pick_columns(context.action, [])
        target_range = configured_range
        dynamic = not templates
        trace = []

        if templates:
            values = [interpolate(template, context.variables, context.data) for template in templates]
        else:
            template = self._sheets.resolve_template(context.user_id, reference, configured_range, context.store)
            if not template.success:
                return self.failure(
                    f"{self.label} failed: header row unavailable",
                    template.error or "Failed to read spreadsheet header row",
                    {"spreadsheet": reference, **(template.error_details or {})},
                )
            if not template.headers:
                return self.failure(
                    f"{self.label} failed: no header row",
                    "Spreadsheet has no header row. Add column names in row 1.",
                    {"spreadsheet": reference, "error_type": "validation"},
                )

            target_range = template.range or configured_range
            lookup = normalized_lookup(context.variables)
            values = [resolve_header_value(header, context.variables, lookup) for header in template.headers]
            trace.append(TraceEvent(
                step="Resolved spreadsheet header row",
                details={
                    "spreadsheet_id": template.spreadsheet_id,
                    "range": template.range,
                    "headers_count": len(template.headers),
                },
            ))
            if not any(value.strip() for value in values):
                return self.failure(
                    f"{self.label} failed: unmapped headers",
                    "Unable to map extracted fields to spreadsheet headers. Provide explicit "
                    "columns or align header names with extracted keys.",
                    {"spreadsheet": reference, "headers": template.headers, "error_type": "validation"},
                )

        appended = self._sheets.append_row(context.user_id, reference, target_range, values, context.store)
        if not appended.success:
            return self.failure(
                f"{self.label} failed",
                appended.error or "Failed to append spreadsheet row",
                {"spreadsheet": reference, "range": target_range, **(appended.error_details or {})},
            )

        spreadsheet_id = appended.spreadsheet_id or reference
        final_range = appended.range or target_range or "Sheet1"
        trace.append(TraceEvent(
            step=f"Appended row to {self._sheets.provider}",
            details={
                "spreadsheet_id": spreadsheet_id,
                "range": final_range,
                "columns_count": len(values),
                "dynamic_mapping": dynamic,
            },
        ))
        return ActionResult(
            success=True,
            logs=[f"Appended {len(values)} columns to spreadsheet {spreadsheet_id} at {final_range}"],
            trace=trace,
            outputs={"spreadsheet_id": spreadsheet_id, "sheet_range": final_range},
        )
