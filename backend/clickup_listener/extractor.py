"""Extraction of normalized fields from ClickUp webhook payloads.

ClickUp has delivered several payload shapes over time: the task object
under ``task``, an alternate body under ``payload``, bare ``task_id`` fields,
and comment objects in four different places. Every function here is a pure
function over the decoded payload. Each field is looked up in an ordered list
of candidate sources and the first non-empty one wins.
"""

import math
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

from dateutil import parser as dtparser

from .errors import MalformedRequest
from .events import CommentData, EventCategory, ExtractedEvent, PriorityChange
from .stores.base import StatusLabel

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Epoch values above this are milliseconds
MILLISECOND_THRESHOLD = 9999999999

TASK_SHAPE_KEYS = ("name", "description", "text_content", "status_id")
ALT_TASK_ID_KEYS = ("task_id", "taskId", "id")
PARENT_KEYS = ("parent", "parent_id", "parentId")

COMMENT_SHAPE_KEYS = ("comment_text", "text", "comment", "comment_text_rich")
COMMENT_ID_KEYS = ("id", "comment_id", "commentId")
COMMENT_TEXT_KEYS = ("comment_text", "text", "comment", "text_content", "content")
COMMENT_DATE_KEYS = ("date", "created_at")

PRIORITY_ALIASES = {
    "critical": 1,
    "urgent": 1,
    "blocker": 1,
    "highest": 1,
    "high": 2,
    "medium": 3,
    "normal": 3,
    "low": 4,
    "lowest": 5,
    "none": None,
    "n/a": None,
}

# Normalized ClickUp custom field name -> ticket column
CUSTOM_FIELD_COLUMNS = {
    "acceptancecriteria": "acceptance_criteria",
    "priority": "priority",
    "planhours": "plan_hours",
    "hourremaining": "hour_remaining",
    "storypoints": "storypoints",
    "sprint": "sprint",
    "tags": "tags",
    "duedate": "date_to_finish",
    "datetofinish": "date_to_finish",
    "due": "date_to_finish",
    "startdate": "edit_from",
    "enddate": "edit_to",
    "editfrom": "edit_from",
    "editto": "edit_to",
    "url": "url",
    "component": "component",
    "version": "version",
    "os": "os",
    "browser": "browser",
    "resolution": "resolution",
    "production": "production",
    "staging": "staging",
    "type": "type",
}

DATE_COLUMNS = frozenset({"date", "date_to_finish", "edit_from", "edit_to"})
BOOL_COLUMNS = frozenset({"production", "staging"})
OPTION_FIELD_TYPES = frozenset({"drop_down", "labels"})

TRUE_VALUES = frozenset({"true", "yes", "1"})
FALSE_VALUES = frozenset({"false", "no", "0"})

# ClickUp status type -> local status types to try, in order
STATUS_TYPE_BUCKETS = {
    "closed": ("DONE",),
    "done": ("DONE",),
    "complete": ("DONE",),
    "completed": ("DONE",),
    "in_progress": ("INPROGRESS",),
    "inprogress": ("INPROGRESS",),
    "progress": ("INPROGRESS",),
}
DEFAULT_STATUS_BUCKETS = ("NEW", "INPROGRESS")


# =============================================================================
# Value helpers
# =============================================================================


def _is_dict(value) -> bool:
    return isinstance(value, dict)


def _text(value) -> str:
    """Stringify a scalar; containers and None become ""."""
    if value is None or isinstance(value, (dict, list)):
        return ""
    if isinstance(value, bool):
        return "1" if value else ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _is_numeric(value) -> bool:
    """Finite numbers and numeric strings; "nan", "inf" and overflows are not."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    if isinstance(value, str):
        try:
            return math.isfinite(float(value))
        except ValueError:
            return False
    return False


def _is_blank(value) -> bool:
    return value is None or value is False or _text(value) in ("", "0")


def _first_filled(values: Iterable) -> str:
    """Return the first candidate that is not blank, as text."""
    for value in values:
        if not _is_blank(value):
            return _text(value)
    return ""


def _get(mapping: dict, *keys: str):
    """Return the first of ``keys`` that is set (not None) in ``mapping``."""
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def _history_field(item: dict) -> str:
    return _text(_get(item, "field", "type"))


def normalize_label(value: str) -> str:
    """Lowercase and strip everything but ASCII letters and digits."""
    return re.sub(r"[^a-z0-9]+", "", value.strip().lower())


def format_timestamp(timestamp: int) -> str:
    """Format epoch seconds (or milliseconds) as a UTC datetime string."""
    if timestamp > MILLISECOND_THRESHOLD:
        timestamp = timestamp // 1000
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime(DATE_FORMAT)


def _parse_datetime(value: str) -> Optional[str]:
    try:
        if _is_numeric(value):
            return format_timestamp(int(float(value)))
        parsed = dtparser.parse(value)
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed.strftime(DATE_FORMAT)


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime(DATE_FORMAT)


def normalize_date_value(value: str) -> str:
    """Normalize a date custom field; unparsable values are kept as-is."""
    if value == "":
        return ""
    parsed = _parse_datetime(value)
    return parsed if parsed is not None else value


def normalize_boolean_value(value: str) -> str:
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return "1"
    if normalized in FALSE_VALUES:
        return "0"
    return value


def normalize_comment_date(value) -> str:
    """Normalize a comment date, defaulting to now."""
    if _is_numeric(value) or (isinstance(value, str) and value):
        parsed = _parse_datetime(_text(value))
        if parsed is not None:
            return parsed
    return utc_now()


# =============================================================================
# Task fields
# =============================================================================


def is_task_shaped(data) -> bool:
    return _is_dict(data) and any(data.get(key) is not None for key in TASK_SHAPE_KEYS)


def extract_task_data(payload: dict) -> dict:
    """Return the task object: ``task``, else a task-shaped ``payload``."""
    task = payload.get("task")
    if _is_dict(task) and task:
        return task
    alternate = payload.get("payload")
    if is_task_shaped(alternate):
        return alternate
    return {}


def extract_task_id(payload: dict, task_data: dict) -> str:
    candidates = [task_data.get("id"), payload.get("task_id")]
    alternate = payload.get("payload")
    if is_task_shaped(alternate):
        candidates.extend(alternate.get(key) for key in ALT_TASK_ID_KEYS)
    return _first_filled(candidates).strip()


def extract_history_items(payload: dict, task_data: dict) -> list:
    for source in (payload, task_data):
        items = source.get("history_items")
        if isinstance(items, list) and items:
            return items
    return []


def find_history_value(history_items: list, fields: tuple[str, ...]) -> str:
    """Return the new value of the first history item for one of ``fields``."""
    for item in history_items:
        if not _is_dict(item) or _history_field(item) not in fields:
            continue
        after = _get(item, "after", "value")
        if isinstance(after, str):
            return after.strip()
        if _is_dict(after):
            value = _get(after, "name", "status")
            if value is not None:
                return _text(value).strip()
    return ""


def extract_headline(task_data: dict, history_items: list, task_id: str) -> str:
    return (
        _text(task_data.get("name")).strip()
        or find_history_value(history_items, ("name", "title"))
        or f"ClickUp Task {task_id}"
    )


def extract_description(task_data: dict, history_items: list) -> str:
    description = (
        _text(task_data.get("description")).strip()
        or _text(task_data.get("text_content")).strip()
        or find_history_value(history_items, ("description", "text"))
    )

    url = _text(_get(task_data, "url", "link")).strip()
    if url and url not in description:
        prefix = f"{description}\n\n" if description else ""
        description = f"{prefix}ClickUp: {url}"

    return description


def extract_parent(task_data: dict, payload: dict) -> tuple[str, bool]:
    """Find the ClickUp parent task id.

    Returns:
        Tuple of (parent id or "", whether any parent key was present). A
        present key with an empty value means the parent was cleared.
    """
    sources = [task_data, payload]
    if _is_dict(payload.get("payload")):
        sources.append(payload["payload"])

    parent_id = ""
    present = False
    for source in sources:
        for key in PARENT_KEYS:
            if key not in source:
                continue
            present = True
            value = source[key]
            if _is_dict(value):
                parent_id = _text(value.get("id"))
            else:
                parent_id = _text(value)
            if parent_id.strip():
                return parent_id.strip(), True

    return "", present


# =============================================================================
# Status and priority
# =============================================================================


def extract_status_label(history_items: list) -> str:
    return find_history_value(history_items, ("status",))


def extract_status_type(history_items: list) -> str:
    for item in history_items:
        if not _is_dict(item):
            continue
        field_name = _history_field(item)
        if field_name and field_name != "status":
            continue
        data = item.get("data")
        if _is_dict(data) and data.get("status_type") is not None:
            return _text(data["status_type"]).lower()
        after = item.get("after")
        if _is_dict(after) and after.get("type") is not None:
            return _text(after["type"]).lower()
    return ""


def match_status_label(label: str, statuses: list[StatusLabel]) -> Optional[int]:
    """Match a status name ignoring case and punctuation."""
    normalized = normalize_label(label)
    if not normalized:
        return None
    for status in statuses:
        if normalize_label(status.name) == normalized:
            return status.id
    return None


def match_status_type(status_type: str, statuses: list[StatusLabel]) -> Optional[int]:
    """Pick the first status of the bucket a ClickUp status type falls in."""
    buckets = STATUS_TYPE_BUCKETS.get(status_type.lower(), DEFAULT_STATUS_BUCKETS)
    for bucket in buckets:
        for status in statuses:
            if status.status_type == bucket:
                return status.id
    return None


def map_priority_value(value: str) -> Optional[PriorityChange]:
    normalized = value.strip().lower()
    if not normalized:
        return None
    if _is_numeric(normalized):
        numeric = int(float(normalized))
        if 1 <= numeric <= 5:
            return PriorityChange(numeric)
    if normalized in PRIORITY_ALIASES:
        return PriorityChange(PRIORITY_ALIASES[normalized])
    return None


def extract_priority(history_items: list) -> Optional[PriorityChange]:
    """Return the first recognizable priority change in the history."""
    for item in history_items:
        if not _is_dict(item) or _history_field(item) != "priority":
            continue

        after = item.get("after")
        if _is_dict(after):
            candidate = _get(after, "priority", "id")
        elif isinstance(after, (str, int, float)) and not isinstance(after, bool):
            candidate = after
        else:
            candidate = None

        change = map_priority_value(_text(candidate))
        if change is not None:
            return change
    return None


# =============================================================================
# Custom fields
# =============================================================================


def normalize_field_name(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "", name.lower())


def map_custom_field_to_column(field_name: str, known_columns: set[str]) -> Optional[str]:
    column = CUSTOM_FIELD_COLUMNS.get(normalize_field_name(field_name))
    if column is None or column not in known_columns:
        return None
    return column


def resolve_custom_field_option(custom_field: dict, value: str) -> str:
    """Resolve a drop-down/label option id to its display value."""
    type_config = custom_field.get("type_config")
    options = type_config.get("options") if _is_dict(type_config) else None
    if not isinstance(options, list):
        return ""
    for option in options:
        if _is_dict(option) and _text(option.get("id")) == value:
            return _text(_get(option, "value", "name", "id")).strip()
    return ""


def stringify_custom_field_value(value, custom_field: Optional[dict]) -> str:
    if _is_dict(value):
        return _text(_get(value, "name", "value")).strip()
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return ""

    text = _text(value).strip()
    if not text:
        return ""

    if custom_field and _text(custom_field.get("type")) in OPTION_FIELD_TYPES:
        return resolve_custom_field_option(custom_field, text) or text

    return text


def extract_custom_field_value(item: dict, custom_field: Optional[dict]) -> Optional[str]:
    """Return the new value of a custom field history item.

    ``after`` is preferred over ``value``; an explicit null ``after`` clears
    the field (""), a missing value yields None.
    """
    has_after = "after" in item
    raw = item["after"] if has_after else item.get("value")
    if raw is None:
        return "" if has_after else None

    if isinstance(raw, list):
        values = [stringify_custom_field_value(entry, custom_field) for entry in raw]
        return ", ".join(value for value in values if value != "")

    return stringify_custom_field_value(raw, custom_field)


def extract_custom_fields(history_items: list, known_columns: set[str]) -> dict[str, str]:
    """Map custom field changes onto ticket columns that exist."""
    if not history_items or not known_columns:
        return {}

    updates = {}
    for item in history_items:
        if not _is_dict(item) or _history_field(item) != "custom_field":
            continue

        custom_field = item.get("custom_field")
        if not _is_dict(custom_field):
            continue
        field_name = _text(custom_field.get("name"))
        if not field_name:
            continue

        column = map_custom_field_to_column(field_name, known_columns)
        if column is None:
            continue

        value = extract_custom_field_value(item, custom_field)
        if value is None:
            continue

        if column in DATE_COLUMNS:
            value = normalize_date_value(value)
        elif column in BOOL_COLUMNS:
            value = normalize_boolean_value(value)

        updates[column] = value

    return updates


# =============================================================================
# Comments
# =============================================================================


def is_comment_shaped(data) -> bool:
    return _is_dict(data) and any(
        data.get(key) is not None for key in COMMENT_SHAPE_KEYS
    )


def _comment_candidates(payload: dict) -> list[dict]:
    candidates = [payload.get("comment")]

    alternate = payload.get("payload")
    if _is_dict(alternate):
        candidates.append(alternate.get("comment"))
        candidates.append(alternate)

    data = payload.get("data")
    if _is_dict(data):
        candidates.append(data.get("comment"))

    history_items = payload.get("history_items")
    if isinstance(history_items, list):
        candidates.extend(
            item.get("comment")
            for item in history_items
            if _is_dict(item) and item.get("field") == "comment"
        )

    return [candidate for candidate in candidates if _is_dict(candidate)]


def find_comment_payload(payload: dict) -> Optional[dict]:
    for candidate in _comment_candidates(payload):
        if is_comment_shaped(candidate):
            return candidate
    return None


def comment_from_object(comment: dict) -> CommentData:
    comment_id = _first_filled(comment.get(key) for key in COMMENT_ID_KEYS)

    text = _first_filled(comment.get(key) for key in COMMENT_TEXT_KEYS)
    rich = comment.get("comment_text_rich")
    if not text and isinstance(rich, str):
        text = rich

    parent_id = ""
    for key in PARENT_KEYS:
        if key not in comment:
            continue
        value = comment[key]
        if _is_dict(value) and value.get("id") is not None:
            parent_id = _text(value["id"])
            break
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            parent_id = _text(value)
            break

    return CommentData(
        id=comment_id.strip(),
        text=text.strip(),
        date=normalize_comment_date(_get(comment, *COMMENT_DATE_KEYS)),
        parent_id=parent_id.strip(),
    )


def extract_comment(payload: dict) -> Optional[CommentData]:
    """Return the comment sub-record, or None when there is no comment."""
    comment = find_comment_payload(payload)
    if comment is None:
        return None
    return comment_from_object(comment)


def extract_history_comments(history_items: list) -> list[CommentData]:
    """Return complete comments nested in a task payload's history."""
    comments = []
    for item in history_items:
        if not _is_dict(item) or item.get("field") != "comment":
            continue
        comment = item.get("comment")
        if not is_comment_shaped(comment):
            continue
        data = comment_from_object(comment)
        if data.id and data.text:
            comments.append(data)
    return comments


# =============================================================================
# Whole event
# =============================================================================


def extract_event(
    payload: dict,
    name: str,
    category: EventCategory,
    known_columns: Optional[set[str]] = None,
) -> ExtractedEvent:
    """Build the normalized view of a task or comment delivery.

    Raises:
        MalformedRequest: If no task id can be found
    """
    task_data = extract_task_data(payload)
    task_id = extract_task_id(payload, task_data)
    if not task_id:
        raise MalformedRequest("Missing task id")

    history_items = extract_history_items(payload, task_data)
    parent_id, has_parent_field = extract_parent(task_data, payload)

    event = ExtractedEvent(
        name=name,
        category=category,
        task_id=task_id,
        parent_task_id=parent_id,
        has_parent_field=has_parent_field,
        history_items=history_items,
    )

    if category is EventCategory.COMMENT:
        event.comment = extract_comment(payload)
        return event

    event.headline = extract_headline(task_data, history_items, task_id)
    event.description = extract_description(task_data, history_items)
    event.status_label = extract_status_label(history_items)
    event.status_type = extract_status_type(history_items)
    event.priority = extract_priority(history_items)
    event.custom_fields = extract_custom_fields(history_items, known_columns or set())
    return event
