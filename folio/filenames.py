"""
Filename resolution for rename, copy and upload actions.

Modes for the `filename` directive:

    None / "" / "original"  keep the original stem + extension
    "auto"                  derived name -> suggested_filename -> original stem
    anything else           "{variable}" template, rendered with interpolate()

The extension is appended whenever the result doesn't already end with it.
"""
import re

from folio.models import ExtractedData
from folio.variables import interpolate, parse_date

_NON_ALNUM_RUN = re.compile(r"[^a-zA-Z0-9]+")
_WHITESPACE_RUN = re.compile(r"\s+")
_NON_SLUG = re.compile(r"[^a-zA-Z0-9-]+")
_NON_AMOUNT = re.compile(r"[^0-9.$€£]")


def split_name(filename: str) -> tuple[str, str]:
    """Split "report.final.pdf" into ("report.final", ".pdf")."""
    dot = filename.rfind(".")
    if dot <= 0:
        return filename, ""
    return filename[:dot], filename[dot:]


def derive_name_from_variables(variables: dict[str, str]) -> str | None:
    """
    Build a stem shaped like YYYY-MM-DD_Issuer_DocType[_Amount].

    Each segment appears only when its variable is present (the date segment
    also needs a parseable date). Returns None if no segment could be built.
    """
    parts: list[str] = []

    date_value = variables.get("date")
    if date_value:
        parsed = parse_date(date_value)
        if parsed is not None:
            parts.append(parsed.strftime("%Y-%m-%d"))

    issuer = variables.get("issuer")
    if issuer:
        segment = _NON_ALNUM_RUN.sub("-", issuer).strip("-")
        if segment:
            parts.append(segment)

    document_type = variables.get("document_type")
    if document_type:
        segment = _NON_SLUG.sub("", _WHITESPACE_RUN.sub("-", document_type))
        if segment:
            parts.append(segment)

    amount = variables.get("amount") or variables.get("total_amount")
    if amount:
        segment = _NON_AMOUNT.sub("", amount)
        if segment:
            parts.append(segment)

    return "_".join(parts) if parts else None


def _with_extension(name: str, ext: str) -> str:
    return name if name.endswith(ext) else name + ext


def resolve_filename(
    filename_mode: str | None,
    variables: dict[str, str],
    original_stem: str,
    ext: str,
    data: ExtractedData | None = None,
) -> str:
    """
    Resolve the final filename for an action.

    Args:
        filename_mode - None, "original", "auto", or an interpolation template
        variables     - the run's variable map
        original_stem - current filename without extension
        ext           - current extension including the dot (may be "")
        data          - raw extracted data for path lookups in templates

    Returns:
        str - filename including extension
    """
    if not filename_mode or filename_mode == "original":
        return original_stem + ext

    if filename_mode == "auto":
        suggested = (variables.get("suggested_filename") or "").strip()
        smart = derive_name_from_variables(variables) or suggested or original_stem
        return _with_extension(smart, ext)

    return _with_extension(interpolate(filename_mode, variables, data), ext)
