# validators.py
# - Input checks applied before any Graph call
# - Pure functions: raise ValidationError with a caller-safe message, never touch the network
# - Logs carry lengths and pattern names only, never the rejected value

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from msgraph_mcp.errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_FILTER_FIELDS = (
    "status",
    "importance",
    "dueDateTime",
    "createdDateTime",
    "lastModifiedDateTime",
    "isReminderOn",
    "title",
)

ALLOWED_OPERATORS = ("eq", "ne", "gt", "ge", "lt", "le", "and", "or", "not")

IMPORTANCE_VALUES = ("low", "normal", "high")
PERCENT_COMPLETE_VALUES = (0, 50, 100)

MAX_ID_LENGTH = 200
MAX_SEARCH_LENGTH = 1000
MAX_TITLE_LENGTH = 400
MAX_RANGE_DAYS = 365
DATE_WINDOW_YEARS = 5

_ID_RE = re.compile(r"^[A-Za-z0-9_\-+=]+$")
_FRACTION_RE = re.compile(r"(\.\d+)")

_MARKUP_PATTERNS = (
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
)

_FILTER_SUSPICIOUS = (
    re.compile(r"[;<>{}\[\]\\]"),
    re.compile(r"\b(drop|delete|update|insert|exec|script|eval|process|require)\b", re.IGNORECASE),
) + _MARKUP_PATTERNS

_SEARCH_SUSPICIOUS = _MARKUP_PATTERNS + (re.compile(r"[;&|`$()]"),)

# "field op" and "field/sub op"; the parent property is what gets checked
_FILTER_FIELD_RE = re.compile(r"(\w+)(?:/\w+)?\s+(?:eq|ne|gt|ge|lt|le)\b", re.IGNORECASE)
_FILTER_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")
_FILTER_TOKEN_RE = re.compile(r"''|\(|\)|[^\s()]+")
_COMPARISON_OPERATORS = ("eq", "ne", "gt", "ge", "lt", "le")
_LOGICAL_OPERATORS = ("and", "or")


def _first_match(patterns, value: str) -> Optional[re.Pattern]:
    for p in patterns:
        if p.search(value):
            return p
    return None


# -----------------------------
# OData filter
# -----------------------------
def validate_odata_filter(filter_expr: Optional[str]) -> None:
    """Whitelist check for a $filter expression. Empty input is allowed.

    >>> validate_odata_filter("status eq 'completed' and importance eq 'high'")
    """
    if filter_expr is None or not filter_expr.strip():
        return
    f = filter_expr.strip()

    if "\x00" in f:
        logger.warning("null byte in odata filter")
        raise ValidationError("Filter contains null bytes")

    hit = _first_match(_FILTER_SUSPICIOUS, f)
    if hit:
        logger.warning("suspicious odata filter pattern=%s length=%s", hit.pattern, len(f))
        raise ValidationError("Filter contains invalid characters or patterns")

    # string literals may contain anything the checks below would misread as syntax
    bare = _FILTER_LITERAL_RE.sub("''", f)

    for m in _FILTER_FIELD_RE.finditer(bare):
        _check_filter_field(m.group(1))

    _check_filter_operators(bare)
    logger.debug("odata filter ok length=%s", len(f))


def _check_filter_field(field: str) -> None:
    if field not in ALLOWED_FILTER_FIELDS:
        logger.warning("odata filter field not allowed length=%s", len(field))
        raise ValidationError(
            f"Invalid filter field: {field}. Allowed fields: {', '.join(ALLOWED_FILTER_FIELDS)}"
        )


def _reject_operator(op: str) -> None:
    logger.warning("odata filter operator not allowed length=%s", len(op))
    raise ValidationError(f"Invalid operator: {op}. Allowed operators: {', '.join(ALLOWED_OPERATORS)}")


def _check_filter_operators(bare: str) -> None:
    """Walk `[not] field op value (and|or ...)` clauses; anything in an operator slot must be whitelisted."""
    expect = "field"
    for tok in _FILTER_TOKEN_RE.findall(bare):
        low = tok.lower()
        if tok in ("(", ")"):
            continue
        if expect == "field":
            if low != "not":
                _check_filter_field(tok.split("/", 1)[0])
                expect = "comparison"
        elif expect == "comparison":
            if low not in _COMPARISON_OPERATORS:
                _reject_operator(low)
            expect = "value"
        elif expect == "value":
            expect = "logical"
        else:
            if low not in _LOGICAL_OPERATORS:
                _reject_operator(low)
            expect = "field"
    if expect != "logical":
        logger.warning("odata filter ends mid-clause expect=%s", expect)
        raise ValidationError("Incomplete filter expression")


# -----------------------------
# Identifiers
# -----------------------------
def validate_id(value: Any, label: str = "ID") -> str:
    """Graph ids are base64-ish: letters, digits, _ - + = and nothing else."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    v = value.strip()
    if "\x00" in v:
        logger.warning("null byte in %s", label)
        raise ValidationError(f"{label} contains null bytes")
    if len(v) > MAX_ID_LENGTH:
        logger.warning("%s too long length=%s", label, len(v))
        raise ValidationError(f"{label} exceeds maximum length")
    if not _ID_RE.match(v):
        logger.warning("invalid %s format length=%s", label, len(v))
        raise ValidationError(f"Invalid {label} format")
    return v


def validate_list_id(value: Any) -> str:
    return validate_id(value, "List ID")


def validate_task_id(value: Any) -> str:
    return validate_id(value, "Task ID")


def validate_plan_id(value: Any) -> str:
    return validate_id(value, "Plan ID")


def validate_bucket_id(value: Any) -> str:
    return validate_id(value, "Bucket ID")


def validate_group_id(value: Any) -> str:
    return validate_id(value, "Group ID")


def validate_event_id(value: Any) -> str:
    return validate_id(value, "Event ID")


def validate_user_id(value: Any) -> str:
    return validate_id(value, "User ID")


# -----------------------------
# Free text
# -----------------------------
def validate_search_query(query: Any) -> str:
    if not isinstance(query, str):
        raise ValidationError("Search query is required")
    q = query.strip()
    if not q:
        raise ValidationError("Search query cannot be empty")
    if len(q) > MAX_SEARCH_LENGTH:
        logger.warning("search query too long length=%s", len(q))
        raise ValidationError(f"Search query exceeds maximum length ({MAX_SEARCH_LENGTH} characters)")
    if "\x00" in q:
        logger.warning("null byte in search query")
        raise ValidationError("Search query contains null bytes")
    hit = _first_match(_SEARCH_SUSPICIOUS, q)
    if hit:
        logger.warning("suspicious search query pattern=%s", hit.pattern)
        raise ValidationError("Search query contains invalid patterns")
    return q


def validate_title(title: Any, label: str = "Task title") -> str:
    if not isinstance(title, str):
        raise ValidationError(f"{label} is required")
    t = title.strip()
    if not t:
        raise ValidationError(f"{label} cannot be empty")
    if len(t) > MAX_TITLE_LENGTH:
        logger.warning("%s too long length=%s", label, len(t))
        raise ValidationError(f"{label} exceeds maximum length ({MAX_TITLE_LENGTH} characters)")
    if "\x00" in t:
        logger.warning("null byte in %s", label)
        raise ValidationError(f"{label} contains null bytes")
    hit = _first_match(_MARKUP_PATTERNS, t)
    if hit:
        logger.warning("suspicious %s pattern=%s", label, hit.pattern)
        raise ValidationError(f"{label} contains invalid patterns")
    return t


# -----------------------------
# Dates
# -----------------------------
def parse_iso_datetime(value: str) -> datetime:
    """ISO 8601 date or datetime -> aware datetime (naive input is taken as UTC)."""
    v = value.strip()
    if v.endswith(("Z", "z")):
        v = v[:-1] + "+00:00"
    # Graph sends 7 fractional digits; fromisoformat takes at most 6 on older interpreters
    v = _FRACTION_RE.sub(lambda m: m.group(1)[:7], v)
    dt = datetime.fromisoformat(v)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _shift_years(dt: datetime, years: int) -> datetime:
    try:
        return dt.replace(year=dt.year + years)
    except ValueError:
        # Feb 29 -> Feb 28
        return dt.replace(year=dt.year + years, day=28)


def _parse_date_arg(value: Any, label: str) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    if "\x00" in value:
        logger.warning("null byte in %s", label)
        raise ValidationError(f"{label} contains null bytes")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        logger.warning("invalid %s format length=%s", label, len(value))
        raise ValidationError(f"{label} is not a valid date. Use ISO format (e.g., 2025-01-15)")


def validate_due_date(value: Any, *, now: Optional[datetime] = None) -> datetime:
    """Parse a due date; reject anything more than five years ahead."""
    dt = _parse_date_arg(value, "Due date")
    now = now or datetime.now(timezone.utc)
    if dt > _shift_years(now, DATE_WINDOW_YEARS):
        logger.warning("due date too far in the future")
        raise ValidationError(f"Due date cannot be more than {DATE_WINDOW_YEARS} years in the future")
    return dt


def validate_date_string(value: Any, field_name: str, *, now: Optional[datetime] = None) -> datetime:
    dt = _parse_date_arg(value, field_name)
    now = now or datetime.now(timezone.utc)
    if dt < _shift_years(now, -DATE_WINDOW_YEARS) or dt > _shift_years(now, DATE_WINDOW_YEARS):
        logger.warning("%s out of range", field_name)
        raise ValidationError(f"{field_name} must be within {DATE_WINDOW_YEARS} years of today")
    return dt


def validate_date_range(start: datetime, end: datetime) -> None:
    if end <= start:
        raise ValidationError("End date must be after start date")
    if end - start > timedelta(days=MAX_RANGE_DAYS):
        logger.warning("date range too large days=%s", (end - start).days)
        raise ValidationError(f"Date range cannot exceed {MAX_RANGE_DAYS} days")


# -----------------------------
# Enumerations
# -----------------------------
def validate_importance(value: Any) -> str:
    if value not in IMPORTANCE_VALUES:
        raise ValidationError(f"Invalid importance: {value}. Allowed: {', '.join(IMPORTANCE_VALUES)}")
    return value


def validate_percent_complete(value: Any) -> int:
    if isinstance(value, bool) or value not in PERCENT_COMPLETE_VALUES:
        raise ValidationError(f"Invalid percent complete: {value}. Allowed: 0, 50, 100")
    return int(value)
