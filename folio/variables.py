"""
Variables and template interpolation.

derive_variables() turns a document's extracted data into the flat
{name: string} map every action template is rendered against. Transformers
declared on extract fields add derived variables (year, month, month name)
on top of the raw values.

interpolate() renders "{name}" placeholders. Lookup order for a placeholder:

  1. an exact key in the variable map            {issuer}
  2. a dotted / indexed path into data+variables {line_items[0].total}
     (JSON-looking strings are parsed on the way down)

A placeholder that resolves to nothing is left in the output as literal
"{name}". Substituting an empty string would hide a missing-variable bug in a
filename or webhook body; the literal text makes it obvious.

pick_string() / pick_columns() read action settings from `config` first and
fall back to the legacy top-level keys older policies were saved with, so old
and new action shapes can be mixed in one action list.
"""
import json
import logging
import re
from datetime import datetime
from typing import Any

from folio.models import ExtractedData, ExtractField, PolicyAction

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{([^{}]+)\}")
_INDEX_TOKEN = re.compile(r"^\d+$")

# Tried in order after ISO 8601. US month/day order for slashed dates.
_DATE_FORMATS = (
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
)

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def parse_date(value: str) -> datetime | None:
    """Parse a date string, or return None if no supported format matches."""
    text = value.strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def to_template_string(value: Any) -> str | None:
    """Render a value the way it should appear inside a template."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def _apply_transformer(name: str, parsed: datetime) -> str | None:
    if name == "get_year":
        return str(parsed.year)
    if name == "get_month":
        return f"{parsed.month:02d}"
    if name == "get_month_name":
        return MONTH_NAMES[parsed.month - 1]
    return None


def derive_variables(data: ExtractedData, fields: list[ExtractField]) -> dict[str, str]:
    """
    Build the variable map for one document.

    Every non-null extracted value is copied in as a string. Then, for each
    field that declares transformers and has a non-empty value, each
    transformer runs in declared order and writes its result under its `as`
    key. A value that isn't a parseable date (or an unknown transformer name)
    is skipped with a warning; other fields are unaffected.

    Args:
        data   - raw extracted values, {key: str | number | None}
        fields - the policy's extract field definitions

    Returns:
        dict[str, str] - flat variable map
    """
    variables: dict[str, str] = {}
    for key, value in data.items():
        rendered = to_template_string(value)
        if rendered is not None:
            variables[key] = rendered

    for field in fields:
        if not field.transformers:
            continue
        raw_value = variables.get(field.key)
        if not raw_value:
            continue

        parsed = parse_date(raw_value)
        for transformer in field.transformers:
            if parsed is None:
                logger.warning(
                    "Transformer '%s' skipped for key '%s': %r is not a date",
                    transformer.name, field.key, raw_value,
                )
                continue
            result = _apply_transformer(transformer.name, parsed)
            if result is None:
                logger.warning("Unknown transformer '%s' on key '%s'", transformer.name, field.key)
                continue
            variables[transformer.as_] = result

    return variables


# ── interpolation ─────────────────────────────────────────────────────────────

def _maybe_parse_json(value: str) -> Any:
    trimmed = value.strip()
    if not trimmed:
        return None
    looks_like_json = (
        (trimmed.startswith("{") and trimmed.endswith("}"))
        or (trimmed.startswith("[") and trimmed.endswith("]"))
    )
    if not looks_like_json:
        return None
    try:
        return json.loads(trimmed)
    except ValueError:
        return None


def tokenize_path(path: str) -> list[str | int]:
    """
    Split "a.b[0]['c']" into ["a", "b", 0, "c"].

    Bracketed digits become ints (list indexes); quoted or bare bracket
    contents become string keys.
    """
    tokens: list[str | int] = []
    i = 0
    while i < len(path):
        ch = path[i]
        if ch == ".":
            i += 1
            continue

        if ch == "[":
            end = path.find("]", i + 1)
            if end < 0:
                break
            raw = path[i + 1:end].strip()
            if _INDEX_TOKEN.match(raw):
                tokens.append(int(raw))
            else:
                unquoted = raw.strip("\"'")
                if unquoted:
                    tokens.append(unquoted)
            i = end + 1
            continue

        j = i
        while j < len(path) and path[j] not in ".[":
            j += 1
        token = path[i:j].strip()
        if token:
            tokens.append(token)
        i = j

    return tokens


def get_nested_variable(
    key_path: str,
    variables: dict[str, str],
    data: ExtractedData | None = None,
) -> str | None:
    key = key_path.strip()
    if not key:
        return None
    if key in variables:
        return variables[key]

    tokens = tokenize_path(key)
    if not tokens:
        return None

    current: Any = {**(data or {}), **variables}
    for token in tokens:
        if isinstance(current, str):
            parsed = _maybe_parse_json(current)
            if parsed is not None:
                current = parsed

        if isinstance(current, list):
            if not isinstance(token, int) or token >= len(current):
                return None
            current = current[token]
            continue

        if not isinstance(current, dict):
            return None
        current = current.get(str(token))

    return to_template_string(current)


def interpolate(template: str, variables: dict[str, str], data: ExtractedData | None = None) -> str:
    """Replace {placeholders}; unresolved ones are left as literal text."""
    def _replace(match: re.Match) -> str:
        resolved = get_nested_variable(match.group(1), variables, data)
        return match.group(0) if resolved is None else resolved

    return _PLACEHOLDER.sub(_replace, template)


# ── action config pickers ─────────────────────────────────────────────────────

def pick_string(action: PolicyAction, key: str) -> str | None:
    """Non-blank string setting from action.config, else from the legacy top-level key."""
    value = action.config.get(key)
    if isinstance(value, str) and value.strip():
        return value

    legacy_value = action.legacy_value(key)
    if isinstance(legacy_value, str) and legacy_value.strip():
        return legacy_value

    return None


def _split_columns(value: Any) -> list[str] | None:
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return None


def pick_columns(action: PolicyAction, fallback: list[str]) -> list[str]:
    """Column list from config or legacy key; accepts a list or a comma-separated string."""
    columns = _split_columns(action.config.get("columns"))
    if columns is not None:
        return columns
    columns = _split_columns(action.legacy_value("columns"))
    if columns is not None:
        return columns
    return fallback
