"""Event categories and the normalized view of a ClickUp delivery."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class EventCategory(Enum):
    """How a ClickUp event is handled."""

    TASK = "task"
    COMMENT = "comment"
    IGNORED = "ignored"


TASK_EVENTS = frozenset(
    {
        "taskcreated",
        "taskupdated",
        "taskstatusupdated",
        "tasknameupdated",
        "taskdescriptionupdated",
        "taskpriorityupdated",
    }
)

# ClickUp has used both naming schemes for comment events
COMMENT_UPDATE_EVENTS = frozenset({"taskcommentupdated", "commentupdated"})
COMMENT_DELETE_EVENTS = frozenset({"taskcommentdeleted", "commentdeleted"})
COMMENT_EVENTS = frozenset(
    {"taskcommentposted", "commentcreated"}
    | COMMENT_UPDATE_EVENTS
    | COMMENT_DELETE_EVENTS
)


def normalize_event_name(event) -> str:
    """Lowercase and stringify the payload's ``event`` value."""
    if event is None:
        return ""
    return str(event).strip().lower()


def classify_event(event: str) -> EventCategory:
    """Map a lowercase event name to its category.

    Legacy payloads carry no event name at all; those are treated as task
    mutations.
    """
    if event == "" or event in TASK_EVENTS:
        return EventCategory.TASK
    if event in COMMENT_EVENTS:
        return EventCategory.COMMENT
    return EventCategory.IGNORED


def is_comment_update(event: str) -> bool:
    return event in COMMENT_UPDATE_EVENTS


def is_comment_delete(event: str) -> bool:
    return event in COMMENT_DELETE_EVENTS


@dataclass(frozen=True)
class PriorityChange:
    """A priority found in the payload.

    ``value`` is None when ClickUp explicitly cleared the priority. An
    absent priority is represented by no PriorityChange at all.
    """

    value: Optional[int]


@dataclass
class CommentData:
    """Comment sub-record of a delivery.

    Attributes:
        id: ClickUp comment id ("" when not found)
        text: Comment text ("" when not found)
        date: ``YYYY-MM-DD HH:MM:SS`` UTC
        parent_id: ClickUp id of the comment this one replies to
    """

    id: str
    text: str
    date: str
    parent_id: str = ""


@dataclass
class ExtractedEvent:
    """Normalized view of one inbound payload.

    Attributes:
        name: Lowercase event name
        category: Task, comment or ignored
        task_id: ClickUp task id
        parent_task_id: ClickUp parent task id ("" when unresolved)
        has_parent_field: Whether any parent key was present, even if empty
        headline: Ticket headline
        description: Ticket description
        status_label: Status name from the change history
        status_type: Coarse ClickUp status type from the change history
        priority: Priority change, None when the payload has none
        custom_fields: Ticket column -> normalized custom field value
        comment: Comment sub-record for comment events
        history_items: Change history of the delivery
    """

    name: str
    category: EventCategory
    task_id: str
    parent_task_id: str = ""
    has_parent_field: bool = False
    headline: str = ""
    description: str = ""
    status_label: str = ""
    status_type: str = ""
    priority: Optional[PriorityChange] = None
    custom_fields: dict[str, str] = field(default_factory=dict)
    comment: Optional[CommentData] = None
    history_items: list = field(default_factory=list)
