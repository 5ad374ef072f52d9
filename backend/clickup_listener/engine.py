"""Reconciliation of ClickUp events into local tickets and comments.

Every delivery is resolved against the identifier mappings: a mapped task is
patched, an unmapped one is matched against an existing ticket (same headline
and default tags) or created. Deliveries may arrive duplicated or out of
order, so every step is written to converge on the same state when replayed.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigurationIntegrityError, MalformedRequest
from .events import CommentData, ExtractedEvent, is_comment_delete, is_comment_update
from .extractor import extract_history_comments, match_status_label, match_status_type
from .schema_cache import ColumnCache
from .stores.base import Configuration, MappingStore, StatusLabel, TicketStore
from .tags import merge_tags, split_tags

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of reconciling one event.

    Attributes:
        action: What happened ("created", "matched", "updated", "deleted",
            "unchanged" or "skipped")
        ticket_id: Local ticket the event resolved to
        comment_id: Local comment the event resolved to
        message: Message for the webhook response
    """

    action: str
    ticket_id: Optional[int] = None
    comment_id: Optional[int] = None
    message: Optional[str] = None


class ReconciliationEngine:
    """Applies extracted events to the local tracker."""

    def __init__(
        self,
        mappings: MappingStore,
        tickets: TicketStore,
        column_cache: ColumnCache,
    ):
        self.mappings = mappings
        self.tickets = tickets
        self.column_cache = column_cache

    # =========================================================================
    # Field resolution
    # =========================================================================

    def known_columns(self) -> frozenset[str]:
        """Ticket columns custom fields may be written to."""
        try:
            return self.column_cache.get(self.mappings.list_known_columns)
        except Exception as e:
            logger.warning(f"Could not load ticket columns: {e}")
            return frozenset()

    def resolve_status(self, event: ExtractedEvent, project_id: int) -> Optional[int]:
        """Resolve the event's status to a local status id.

        The label is tried verbatim, then ignoring case and punctuation. If
        neither matches, the ClickUp status type picks a status bucket.
        """
        if not event.status_label and not event.status_type:
            return None

        try:
            statuses: Optional[list[StatusLabel]] = None
            if event.status_label:
                status_id = self.tickets.resolve_status_id(event.status_label, project_id)
                if status_id is not None:
                    return status_id
                statuses = self.tickets.list_status_labels(project_id)
                status_id = match_status_label(event.status_label, statuses)
                if status_id is not None:
                    return status_id

            if event.status_type:
                if statuses is None:
                    statuses = self.tickets.list_status_labels(project_id)
                return match_status_type(event.status_type, statuses)
        except Exception as e:
            logger.warning(f"Could not resolve status for task {event.task_id}: {e}")

        return None

    def build_ticket_updates(
        self,
        ticket_id: int,
        event: ExtractedEvent,
        status_id: Optional[int],
        tag: str,
    ) -> dict:
        """Sparse update for a mapped ticket.

        Only fields that resolved to a value are included. An explicitly
        cleared priority is included as None. Default tags are merged into
        the ticket's tags.
        """
        updates = {}
        if event.headline:
            updates["headline"] = event.headline
        if event.description:
            updates["description"] = event.description
        if status_id is not None:
            updates["status"] = status_id
        if event.priority is not None:
            updates["priority"] = event.priority.value
        for key, value in event.custom_fields.items():
            updates.setdefault(key, value)

        if tag and ticket_id > 0:
            ticket = self.tickets.get_ticket(ticket_id)
            current_tags = ticket.tags if ticket else ""
            base_tags = updates.get("tags", current_tags)
            merged = merge_tags(base_tags, tag)
            if merged != current_tags:
                updates["tags"] = merged

        return updates

    def build_new_ticket(
        self,
        project_id: int,
        event: ExtractedEvent,
        status_id: Optional[int],
        tag: str,
    ) -> dict:
        values = {
            "headline": event.headline,
            "description": event.description,
            "project_id": project_id,
            "tags": merge_tags(event.custom_fields.get("tags", ""), tag),
            "type": "task",
            "user_id": 0,
            "editor_id": 0,
        }
        if status_id is not None:
            values["status"] = status_id
        if event.priority is not None and event.priority.value is not None:
            values["priority"] = event.priority.value
        for key, value in event.custom_fields.items():
            values.setdefault(key, value)
        return values

    # =========================================================================
    # Tasks
    # =========================================================================

    def reconcile_task(self, config: Configuration, event: ExtractedEvent) -> ReconcileResult:
        """Create or update the ticket for a task event.

        Raises:
            ConfigurationIntegrityError: If the configuration has no usable
                project
        """
        self.sync_history_comments(config, event)

        project_id = config.project_id
        if project_id <= 0:
            raise ConfigurationIntegrityError("Configuration missing project id")
        if not self.tickets.project_exists(project_id):
            raise ConfigurationIntegrityError(f"Project {project_id} does not exist")

        tag = config.task_tag.strip()
        status_id = self.resolve_status(event, project_id)

        mapping = self.mappings.lookup_task_map(config.id, event.task_id)

        parent_id = event.parent_task_id
        if not event.has_parent_field and mapping is not None:
            parent_id = mapping.parent_clickup_task_id or ""

        if mapping is not None:
            ticket_id = mapping.ticket_id
            action = "unchanged"
            if ticket_id > 0:
                updates = self.build_ticket_updates(ticket_id, event, status_id, tag)
                if updates:
                    self.tickets.patch_ticket(ticket_id, updates)
                    action = "updated"
                self.mappings.upsert_task_map(config.id, event.task_id, ticket_id)
                if event.has_parent_field:
                    self.mappings.update_task_map_parent(
                        config.id, event.task_id, parent_id or None
                    )
        else:
            ticket_id = None
            action = "matched"
            if event.headline and tag:
                ticket_id = self.mappings.find_duplicate_ticket(
                    project_id, event.headline, split_tags(tag)
                )
                if ticket_id:
                    logger.info(
                        f"Task {event.task_id} matches existing ticket {ticket_id}"
                    )
                    updates = self.build_ticket_updates(ticket_id, event, status_id, tag)
                    if updates:
                        self.tickets.patch_ticket(ticket_id, updates)

            if not ticket_id:
                values = self.build_new_ticket(project_id, event, status_id, tag)
                ticket_id = self.tickets.create_ticket(values)
                action = "created"

            self.mappings.upsert_task_map(
                config.id, event.task_id, ticket_id, parent_id or None
            )

            # A concurrent delivery may have mapped this task after us
            stored = self.mappings.lookup_task_map(config.id, event.task_id)
            if stored is not None and stored.ticket_id != ticket_id:
                logger.warning(
                    f"Task {event.task_id} mapped to ticket {stored.ticket_id} by "
                    f"another delivery, ticket {ticket_id} is left unmapped"
                )
                ticket_id = stored.ticket_id
                action = "matched"

        self.sync_parent_links(config.id, event.task_id, ticket_id, parent_id)

        logger.info(f"ClickUp task {event.task_id} {action} -> ticket {ticket_id}")
        return ReconcileResult(action=action, ticket_id=ticket_id)

    def sync_parent_links(
        self,
        config_id: int,
        clickup_task_id: str,
        ticket_id: int,
        parent_clickup_task_id: str,
    ) -> None:
        """Link the ticket to its parent and its already-synced children."""
        if parent_clickup_task_id:
            parent_map = self.mappings.lookup_task_map(config_id, parent_clickup_task_id)
            if parent_map is not None:
                self.update_ticket_parent(ticket_id, parent_map.ticket_id)

        for child in self.mappings.list_task_maps_by_parent(config_id, clickup_task_id):
            self.update_ticket_parent(child.ticket_id, ticket_id)

    def update_ticket_parent(self, ticket_id: int, parent_ticket_id: int) -> bool:
        """Point a ticket at its parent. Returns whether it was changed."""
        if ticket_id <= 0 or parent_ticket_id <= 0 or ticket_id == parent_ticket_id:
            return False
        ticket = self.tickets.get_ticket(ticket_id)
        current = (ticket.parent_ticket_id or 0) if ticket else 0
        if current == parent_ticket_id:
            return False
        self.tickets.patch_ticket(ticket_id, {"parent_ticket_id": parent_ticket_id})
        logger.info(f"Linked ticket {ticket_id} to parent {parent_ticket_id}")
        return True

    # =========================================================================
    # Comments
    # =========================================================================

    def _create_comment(
        self,
        config_id: int,
        clickup_task_id: str,
        ticket_id: int,
        comment: CommentData,
    ) -> int:
        parent_comment_id = 0
        if comment.parent_id:
            parent_map = self.mappings.lookup_comment_map(config_id, comment.parent_id)
            if parent_map is not None:
                parent_comment_id = parent_map.comment_id

        comment_id = self.tickets.create_comment(
            {
                "text": comment.text,
                "user_id": 0,
                "date": comment.date,
                "module_id": ticket_id,
                "comment_parent": parent_comment_id,
                "status": "",
            },
            "ticket",
        )
        self.mappings.upsert_comment_map(
            config_id, comment.id, clickup_task_id, ticket_id, comment_id
        )

        # A concurrent delivery may have mapped this comment first
        stored = self.mappings.lookup_comment_map(config_id, comment.id)
        if stored is not None and stored.comment_id != comment_id:
            logger.info(
                f"Comment {comment.id} already mapped to {stored.comment_id}, "
                f"removing duplicate {comment_id}"
            )
            self.tickets.delete_comment(comment_id)
            return stored.comment_id

        return comment_id

    def sync_history_comments(self, config: Configuration, event: ExtractedEvent) -> int:
        """Create or edit comments nested in a task event's history.

        Returns:
            Number of comments created or edited
        """
        comments = extract_history_comments(event.history_items)
        if not comments:
            return 0

        mapping = self.mappings.lookup_task_map(config.id, event.task_id)
        if mapping is None:
            return 0

        count = 0
        for comment in comments:
            comment_map = self.mappings.lookup_comment_map(config.id, comment.id)
            if comment_map is not None:
                if comment_map.comment_id > 0:
                    self.tickets.edit_comment(comment.text, comment_map.comment_id)
                    count += 1
                continue
            self._create_comment(config.id, event.task_id, mapping.ticket_id, comment)
            count += 1

        return count

    def reconcile_comment(
        self, config: Configuration, event: ExtractedEvent
    ) -> ReconcileResult:
        """Create, edit or delete the local comment for a comment event.

        Raises:
            MalformedRequest: If the comment, its id or its text is missing
        """
        mapping = self.mappings.lookup_task_map(config.id, event.task_id)
        if mapping is None:
            logger.warning(f"ClickUp comment for unsynced task {event.task_id}")
            return ReconcileResult(action="skipped", message="Task not synced")

        comment = event.comment
        if comment is None:
            raise MalformedRequest("Missing comment data")
        if not comment.id:
            raise MalformedRequest("Missing comment id")

        comment_map = self.mappings.lookup_comment_map(config.id, comment.id)

        if is_comment_delete(event.name):
            if comment_map is None:
                return ReconcileResult(action="unchanged", ticket_id=mapping.ticket_id)
            if comment_map.comment_id > 0:
                self.tickets.delete_comment(comment_map.comment_id)
            self.mappings.delete_comment_map(config.id, comment.id)
            logger.info(f"Deleted comment {comment_map.comment_id} ({comment.id})")
            return ReconcileResult(
                action="deleted",
                ticket_id=mapping.ticket_id,
                comment_id=comment_map.comment_id,
            )

        if not comment.text:
            raise MalformedRequest("Empty comment text")

        if comment_map is not None:
            action = "unchanged"
            if is_comment_update(event.name) and comment_map.comment_id > 0:
                self.tickets.edit_comment(comment.text, comment_map.comment_id)
                action = "updated"
            return ReconcileResult(
                action=action,
                ticket_id=mapping.ticket_id,
                comment_id=comment_map.comment_id,
            )

        comment_id = self._create_comment(
            config.id, event.task_id, mapping.ticket_id, comment
        )
        logger.info(
            f"ClickUp comment {comment.id} created -> comment {comment_id} "
            f"on ticket {mapping.ticket_id}"
        )
        return ReconcileResult(
            action="created", ticket_id=mapping.ticket_id, comment_id=comment_id
        )
