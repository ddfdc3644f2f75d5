"""
LogCsvAction: append one row per document to a CSV file.

Config:
    path    (required) - CSV file path, interpolated
    columns (optional) - list or comma-separated string of variable names;
                         defaults to the extracted data's keys

The header is written when the file is first created. Missing variables
become empty cells. Values are quoted by the csv module, so commas and quotes
in extracted text don't break the row.
"""
import csv
import os

from folio.actions.base import ActionHandler
from folio.models import ActionContext, ActionResult, ActionType, TraceEvent
from folio.variables import interpolate, pick_columns


class LogCsvAction(ActionHandler):
    kind = ActionType.LOG_CSV
    label = "Log CSV"

    def run(self, context: ActionContext) -> ActionResult:
        csv_path = interpolate(self.require(context, "path"), context.variables, context.data)
        columns = pick_columns(context.action, list(context.data.keys()))
        row = [context.variables.get(column, "") for column in columns]

        is_new = not os.path.exists(csv_path)
        if is_new:
            os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
        with open(csv_path, "a", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            if is_new:
                writer.writerow(columns)
            writer.writerow(row)

        return ActionResult(
            success=True,
            logs=[f"Logged CSV -> {csv_path}"],
            trace=[TraceEvent(step="Executed log_csv action", details={"csv_path": csv_path, "columns": columns})],
            outputs={"csv_path": csv_path},
        )
