"""Base classes for the stores the reconciliation engine talks to."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Configuration:
    """A webhook-to-project binding.

    Attributes:
        id: Configuration id
        webhook_id: ClickUp webhook id (optional)
        hook_secret: Shared secret, may be empty
        project_id: Local project tickets are created in
        task_tag: Comma-separated default tags
    """

    id: int
    webhook_id: Optional[str]
    hook_secret: str
    project_id: int
    task_tag: str


@dataclass
class TaskMapping:
    """ClickUp task -> local ticket correspondence."""

    config_id: int
    clickup_task_id: str
    ticket_id: int
    parent_clickup_task_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class CommentMapping:
    """ClickUp comment -> local comment correspondence."""

    config_id: int
    clickup_comment_id: str
    clickup_task_id: str
    ticket_id: int
    comment_id: int
    created_at: Optional[datetime] = None


@dataclass
class StatusLabel:
    """A project's ticket status."""

    id: int
    name: str
    status_type: str  # "NEW" | "INPROGRESS" | "DONE"


@dataclass
class TicketSnapshot:
    """The parts of a ticket the engine reads back."""

    id: int
    project_id: int
    headline: str
    tags: str = ""
    parent_ticket_id: Optional[int] = None
    status: Optional[int] = None
    priority: Optional[int] = None


class MappingStore(ABC):
    """Configurations and ClickUp <-> local identifier mappings."""

    @abstractmethod
    def list_configurations(self) -> list[Configuration]:
        """Return all configurations, newest first."""
        pass

    @abstractmethod
    def get_configuration(self, config_id: int) -> Optional[Configuration]:
        pass

    @abstractmethod
    def save_configuration(
        self,
        webhook_id: Optional[str],
        hook_secret: str,
        project_id: int,
        task_tag: str,
    ) -> int:
        """Persist a configuration, replacing one with the same webhook id.

        Returns:
            Id of the stored configuration
        """
        pass

    @abstractmethod
    def lookup_task_map(
        self, config_id: int, clickup_task_id: str
    ) -> Optional[TaskMapping]:
        pass

    @abstractmethod
    def list_task_maps_by_parent(
        self, config_id: int, parent_clickup_task_id: str
    ) -> list[TaskMapping]:
        """Return mappings whose stored parent is the given ClickUp task."""
        pass

    @abstractmethod
    def upsert_task_map(
        self,
        config_id: int,
        clickup_task_id: str,
        ticket_id: int,
        parent_clickup_task_id: Optional[str] = None,
    ) -> None:
        """Insert a mapping, or update the one with the same unique key.

        On conflict the ticket id and timestamp are updated. The stored
        parent is only overwritten when a parent id is given; clearing it
        goes through update_task_map_parent.
        """
        pass

    @abstractmethod
    def update_task_map_parent(
        self,
        config_id: int,
        clickup_task_id: str,
        parent_clickup_task_id: Optional[str],
    ) -> None:
        """Set (or clear, with None) the stored parent of a mapping."""
        pass

    @abstractmethod
    def lookup_comment_map(
        self, config_id: int, clickup_comment_id: str
    ) -> Optional[CommentMapping]:
        pass

    @abstractmethod
    def upsert_comment_map(
        self,
        config_id: int,
        clickup_comment_id: str,
        clickup_task_id: str,
        ticket_id: int,
        comment_id: int,
    ) -> None:
        """Insert a comment mapping; an existing row with the key wins."""
        pass

    @abstractmethod
    def delete_comment_map(self, config_id: int, clickup_comment_id: str) -> None:
        pass

    @abstractmethod
    def find_duplicate_ticket(
        self, project_id: int, headline: str, tags: list[str]
    ) -> Optional[int]:
        """Find a non-deleted ticket with this exact headline and all tags.

        Returns:
            Ticket id or None
        """
        pass

    @abstractmethod
    def list_known_columns(self) -> set[str]:
        """Return the column names of the ticket table."""
        pass


class TicketStore(ABC):
    """The local issue tracker."""

    @abstractmethod
    def create_ticket(self, fields: dict) -> int:
        """Create a ticket and return its id."""
        pass

    @abstractmethod
    def patch_ticket(self, ticket_id: int, fields: dict) -> None:
        pass

    @abstractmethod
    def get_ticket(self, ticket_id: int) -> Optional[TicketSnapshot]:
        pass

    @abstractmethod
    def project_exists(self, project_id: int) -> bool:
        pass

    @abstractmethod
    def resolve_status_id(self, label: str, project_id: int) -> Optional[int]:
        """Return the id of the project status named exactly ``label``."""
        pass

    @abstractmethod
    def list_status_labels(self, project_id: int) -> list[StatusLabel]:
        """Return the project's statuses in storage order."""
        pass

    @abstractmethod
    def create_comment(self, fields: dict, module: str = "ticket") -> int:
        """Create a comment and return its id."""
        pass

    @abstractmethod
    def edit_comment(self, text: str, comment_id: int) -> None:
        pass

    @abstractmethod
    def delete_comment(self, comment_id: int) -> None:
        pass
