"""Tests for the reconciliation engine."""

from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from clickup_listener.engine import ReconciliationEngine
from clickup_listener.errors import ConfigurationIntegrityError, MalformedRequest
from clickup_listener.events import EventCategory
from clickup_listener.extractor import extract_event
from clickup_listener.models import Comment, DELETED_STATUS, Ticket
from clickup_listener.schema_cache import ColumnCache


def task_event(engine, task, history=None, name="taskupdated", **extra):
    payload = {"event": name, "task": task, "history_items": history or []}
    payload.update(extra)
    return extract_event(payload, name, EventCategory.TASK, engine.known_columns())


def comment_event(task_id, comment, name="taskcommentposted"):
    payload = {"event": name, "task_id": task_id, "comment": comment}
    return extract_event(payload, name, EventCategory.COMMENT)


def get_ticket(db_session, ticket_id):
    return db_session.query(Ticket).filter(Ticket.id == ticket_id).first()


class TestReconcileTaskCreate:
    """Tests for creating and matching tickets."""

    def test_creates_ticket_and_mapping(self, engine, config, db_session, statuses):
        """An unmapped task creates a tagged ticket in the project."""
        event = task_event(
            engine,
            {"id": "abc123", "name": "Fix bug"},
            [{"field": "status", "after": {"status": "in progress"}}],
            name="taskstatusupdated",
        )
        result = engine.reconcile_task(config, event)

        assert result.action == "created"
        ticket = get_ticket(db_session, result.ticket_id)
        assert ticket.headline == "Fix bug"
        assert ticket.project_id == 5
        assert ticket.tags == "clickup"
        assert ticket.type == "task"
        assert ticket.status == statuses["In Progress"]

        mapping = engine.mappings.lookup_task_map(config.id, "abc123")
        assert mapping.ticket_id == result.ticket_id

    def test_replay_does_not_duplicate(self, engine, config, db_session):
        event = task_event(engine, {"id": "abc123", "name": "Fix bug"})

        first = engine.reconcile_task(config, event)
        second = engine.reconcile_task(config, event)

        assert second.ticket_id == first.ticket_id
        assert second.action in ("updated", "unchanged")
        assert db_session.query(Ticket).count() == 1

    def test_matches_existing_ticket(self, engine, config, db_session):
        """A ticket with the same headline and default tags is adopted."""
        existing = Ticket(project_id=5, headline="Fix bug", tags="bug,clickup")
        db_session.add(existing)
        db_session.commit()
        existing_id = existing.id

        result = engine.reconcile_task(
            config, task_event(engine, {"id": "abc123", "name": "Fix bug"})
        )

        assert result.action == "matched"
        assert result.ticket_id == existing_id
        assert db_session.query(Ticket).count() == 1
        assert get_ticket(db_session, existing_id).tags == "bug,clickup"
        assert engine.mappings.lookup_task_map(config.id, "abc123").ticket_id == existing_id

    def test_second_task_with_same_headline_matched(self, engine, config, db_session):
        """Two ClickUp tasks with one headline converge on one ticket."""
        first = engine.reconcile_task(
            config, task_event(engine, {"id": "abc", "name": "Fix bug"})
        )
        second = engine.reconcile_task(
            config, task_event(engine, {"id": "def", "name": "Fix bug"})
        )

        assert second.action == "matched"
        assert second.ticket_id == first.ticket_id
        assert db_session.query(Ticket).count() == 1

    def test_concurrent_mapping_adopted(self, engine, config, db_session):
        """A mapping written by a racing delivery decides the ticket."""
        other = Ticket(project_id=5, headline="Other", tags="")
        db_session.add(other)
        db_session.commit()
        other_id = other.id

        real_upsert = engine.mappings.upsert_task_map

        def racing_upsert(config_id, clickup_task_id, ticket_id, parent=None):
            real_upsert(config_id, clickup_task_id, ticket_id, parent)
            real_upsert(config_id, clickup_task_id, other_id)

        with patch.object(engine.mappings, "upsert_task_map", side_effect=racing_upsert):
            result = engine.reconcile_task(
                config, task_event(engine, {"id": "abc", "name": "Fix bug"})
            )

        assert result.action == "matched"
        assert result.ticket_id == other_id
        assert engine.mappings.lookup_task_map(config.id, "abc").ticket_id == other_id
        assert db_session.query(Ticket).count() == 2

    def test_deleted_ticket_not_matched(self, engine, config, db_session):
        db_session.add(
            Ticket(project_id=5, headline="Fix bug", tags="clickup", status=DELETED_STATUS)
        )
        db_session.commit()

        result = engine.reconcile_task(
            config, task_event(engine, {"id": "abc123", "name": "Fix bug"})
        )

        assert result.action == "created"
        assert db_session.query(Ticket).count() == 2

    def test_ticket_without_default_tag_not_matched(self, engine, config, db_session):
        db_session.add(Ticket(project_id=5, headline="Fix bug", tags="bug"))
        db_session.commit()

        result = engine.reconcile_task(
            config, task_event(engine, {"id": "abc123", "name": "Fix bug"})
        )

        assert result.action == "created"

    def test_missing_project_id(self, engine, mapping_store, project):
        config_id = mapping_store.save_configuration("wh-x", "", 0, "")
        config = mapping_store.get_configuration(config_id)

        with pytest.raises(ConfigurationIntegrityError, match="missing project id"):
            engine.reconcile_task(config, task_event(engine, {"id": "abc"}))

    def test_unknown_project(self, engine, mapping_store, project):
        config_id = mapping_store.save_configuration("wh-x", "", 99, "")
        config = mapping_store.get_configuration(config_id)

        with pytest.raises(ConfigurationIntegrityError, match="Project 99 does not exist"):
            engine.reconcile_task(config, task_event(engine, {"id": "abc"}))


class TestReconcileTaskUpdate:
    """Tests for patching mapped tickets."""

    def test_status_falls_back_to_type(self, engine, config, db_session, statuses):
        engine.reconcile_task(config, task_event(engine, {"id": "abc", "name": "T"}))
        event = task_event(
            engine,
            {"id": "abc", "name": "T"},
            [{"field": "status", "after": {"status": "shipped", "type": "closed"}}],
        )
        result = engine.reconcile_task(config, event)

        assert result.action == "updated"
        assert get_ticket(db_session, result.ticket_id).status == statuses["Done"]

    def test_priority_set_and_cleared(self, engine, config, db_session):
        result = engine.reconcile_task(
            config,
            task_event(
                engine,
                {"id": "abc", "name": "T"},
                [{"field": "priority", "after": {"priority": "high"}}],
            ),
        )
        assert get_ticket(db_session, result.ticket_id).priority == 2

        engine.reconcile_task(
            config,
            task_event(
                engine,
                {"id": "abc", "name": "T"},
                [{"field": "priority", "after": {"priority": "none"}}],
            ),
        )
        assert get_ticket(db_session, result.ticket_id).priority is None

    def test_absent_priority_kept(self, engine, config, db_session):
        result = engine.reconcile_task(
            config,
            task_event(
                engine,
                {"id": "abc", "name": "T"},
                [{"field": "priority", "after": "urgent"}],
            ),
        )
        engine.reconcile_task(config, task_event(engine, {"id": "abc", "name": "T2"}))

        ticket = get_ticket(db_session, result.ticket_id)
        assert ticket.priority == 1
        assert ticket.headline == "T2"

    def test_custom_fields_written(self, engine, config, db_session):
        history = [
            {
                "field": "custom_field",
                "custom_field": {"name": "Due Date", "type": "date"},
                "after": "2024-03-01",
            },
            {
                "field": "custom_field",
                "custom_field": {"name": "Story Points", "type": "number"},
                "after": 5,
            },
            {
                "field": "custom_field",
                "custom_field": {"name": "Tags", "type": "short_text"},
                "after": "frontend",
            },
        ]
        result = engine.reconcile_task(
            config, task_event(engine, {"id": "abc", "name": "T"}, history)
        )

        ticket = get_ticket(db_session, result.ticket_id)
        assert ticket.date_to_finish == datetime(2024, 3, 1)
        assert ticket.storypoints == 5.0
        assert ticket.tags == "frontend,clickup"

    def test_default_tag_merged_on_update(self, engine, config, db_session):
        result = engine.reconcile_task(config, task_event(engine, {"id": "abc", "name": "T"}))
        engine.tickets.patch_ticket(result.ticket_id, {"tags": "bug"})

        engine.reconcile_task(config, task_event(engine, {"id": "abc", "name": "T"}))

        assert get_ticket(db_session, result.ticket_id).tags == "bug,clickup"


class TestParentLinks:
    """Tests for parent/child ticket links."""

    def test_child_before_parent(self, engine, config, db_session):
        child = engine.reconcile_task(
            config, task_event(engine, {"id": "child", "name": "Child", "parent": "par"})
        )
        assert get_ticket(db_session, child.ticket_id).parent_ticket_id is None

        parent = engine.reconcile_task(
            config, task_event(engine, {"id": "par", "name": "Parent"})
        )

        assert get_ticket(db_session, child.ticket_id).parent_ticket_id == parent.ticket_id

    def test_parent_before_child(self, engine, config, db_session):
        parent = engine.reconcile_task(
            config, task_event(engine, {"id": "par", "name": "Parent"})
        )
        child = engine.reconcile_task(
            config, task_event(engine, {"id": "child", "name": "Child", "parent": "par"})
        )

        assert get_ticket(db_session, child.ticket_id).parent_ticket_id == parent.ticket_id

    def test_stored_parent_inherited(self, engine, config):
        """An event without a parent key keeps the stored parent."""
        engine.reconcile_task(
            config, task_event(engine, {"id": "child", "name": "Child", "parent": "par"})
        )
        engine.reconcile_task(config, task_event(engine, {"id": "child", "name": "Child"}))

        mapping = engine.mappings.lookup_task_map(config.id, "child")
        assert mapping.parent_clickup_task_id == "par"

    def test_cleared_parent(self, engine, config):
        engine.reconcile_task(
            config, task_event(engine, {"id": "child", "name": "Child", "parent": "par"})
        )
        engine.reconcile_task(
            config, task_event(engine, {"id": "child", "name": "Child", "parent": None})
        )

        mapping = engine.mappings.lookup_task_map(config.id, "child")
        assert mapping.parent_clickup_task_id is None

    def test_update_ticket_parent_guards(self, engine, config):
        result = engine.reconcile_task(config, task_event(engine, {"id": "a", "name": "A"}))

        assert engine.update_ticket_parent(result.ticket_id, result.ticket_id) is False
        assert engine.update_ticket_parent(0, result.ticket_id) is False
        assert engine.update_ticket_parent(result.ticket_id, 0) is False


class TestReconcileComment:
    """Tests for comment events."""

    @pytest.fixture
    def synced(self, engine, config):
        return engine.reconcile_task(config, task_event(engine, {"id": "abc", "name": "T"}))

    def test_create_comment(self, engine, config, db_session, synced):
        event = comment_event(
            "abc", {"id": "c-1", "comment_text": "hello", "date": 1709251200}
        )
        result = engine.reconcile_comment(config, event)

        assert result.action == "created"
        comment = db_session.query(Comment).filter(Comment.id == result.comment_id).first()
        assert comment.text == "hello"
        assert comment.module == "ticket"
        assert comment.module_id == synced.ticket_id
        assert comment.date == datetime(2024, 3, 1)

    def test_replayed_create_is_noop(self, engine, config, db_session, synced):
        event = comment_event("abc", {"id": "c-1", "comment_text": "hello"})

        first = engine.reconcile_comment(config, event)
        second = engine.reconcile_comment(config, event)

        assert second.action == "unchanged"
        assert second.comment_id == first.comment_id
        assert db_session.query(Comment).count() == 1

    def test_update_edits_text(self, engine, config, db_session, synced):
        created = engine.reconcile_comment(
            config, comment_event("abc", {"id": "c-1", "comment_text": "hello"})
        )
        result = engine.reconcile_comment(
            config,
            comment_event(
                "abc", {"id": "c-1", "comment_text": "edited"}, name="taskcommentupdated"
            ),
        )

        assert result.action == "updated"
        comment = db_session.query(Comment).filter(Comment.id == created.comment_id).first()
        assert comment.text == "edited"

    def test_delete_is_idempotent(self, engine, config, db_session, synced):
        engine.reconcile_comment(
            config, comment_event("abc", {"id": "c-1", "comment_text": "hello"})
        )
        delete = comment_event("abc", {"id": "c-1", "text": ""}, name="commentdeleted")

        first = engine.reconcile_comment(config, delete)
        second = engine.reconcile_comment(config, delete)

        assert first.action == "deleted"
        assert second.action == "unchanged"
        assert db_session.query(Comment).count() == 0
        assert engine.mappings.lookup_comment_map(config.id, "c-1") is None

    def test_reply_links_parent_comment(self, engine, config, db_session, synced):
        parent = engine.reconcile_comment(
            config, comment_event("abc", {"id": "c-1", "comment_text": "question"})
        )
        reply = engine.reconcile_comment(
            config,
            comment_event("abc", {"id": "c-2", "comment_text": "answer", "parent": "c-1"}),
        )

        comment = db_session.query(Comment).filter(Comment.id == reply.comment_id).first()
        assert comment.comment_parent == parent.comment_id

    def test_unsynced_task_skipped(self, engine, config, db_session):
        result = engine.reconcile_comment(
            config, comment_event("nope", {"id": "c-1", "comment_text": "hello"})
        )

        assert result.action == "skipped"
        assert result.message == "Task not synced"
        assert db_session.query(Comment).count() == 0

    def test_missing_comment_id(self, engine, config, synced):
        with pytest.raises(MalformedRequest, match="Missing comment id"):
            engine.reconcile_comment(
                config, comment_event("abc", {"comment_text": "hello"})
            )

    def test_empty_comment_text(self, engine, config, synced):
        with pytest.raises(MalformedRequest, match="Empty comment text"):
            engine.reconcile_comment(
                config, comment_event("abc", {"id": "c-1", "comment_text": ""})
            )

    def test_missing_comment_data(self, engine, config, synced):
        with pytest.raises(MalformedRequest, match="Missing comment data"):
            engine.reconcile_comment(config, comment_event("abc", None))

    def test_concurrent_duplicate_removed(self, engine, config, db_session, synced):
        """A comment mapped by another delivery wins over a new local copy."""
        first = engine.reconcile_comment(
            config, comment_event("abc", {"id": "c-1", "comment_text": "hello"})
        )
        event = comment_event("abc", {"id": "c-1", "comment_text": "hello"})

        comment_id = engine._create_comment(
            config.id, "abc", synced.ticket_id, event.comment
        )

        assert comment_id == first.comment_id
        assert db_session.query(Comment).count() == 1


class TestHistoryComments:
    """Tests for comments nested in task events."""

    def test_history_comments_synced(self, engine, config, db_session):
        engine.reconcile_task(config, task_event(engine, {"id": "abc", "name": "T"}))
        history = [
            {"field": "comment", "comment": {"id": "c-1", "comment_text": "first"}},
        ]

        engine.reconcile_task(config, task_event(engine, {"id": "abc", "name": "T"}, history))
        assert db_session.query(Comment).count() == 1

        history[0]["comment"]["comment_text"] = "changed"
        engine.reconcile_task(config, task_event(engine, {"id": "abc", "name": "T"}, history))

        comments = db_session.query(Comment).all()
        assert len(comments) == 1
        assert comments[0].text == "changed"

    def test_history_comments_need_mapped_task(self, engine, config, db_session):
        history = [
            {"field": "comment", "comment": {"id": "c-1", "comment_text": "first"}},
        ]
        engine.reconcile_task(config, task_event(engine, {"id": "abc", "name": "T"}, history))

        assert db_session.query(Comment).count() == 0


class TestDegradedLookups:
    """Tests for optional lookups that fail."""

    def test_status_lookup_failure_omits_status(self, engine, config, db_session):
        event = task_event(
            engine,
            {"id": "abc", "name": "T"},
            [{"field": "status", "after": {"status": "Review", "type": "closed"}}],
        )
        with patch.object(
            engine.tickets, "list_status_labels", side_effect=SQLAlchemyError("boom")
        ):
            result = engine.reconcile_task(config, event)

        assert result.action == "created"
        assert get_ticket(db_session, result.ticket_id).status is None

    def test_column_lookup_failure_yields_no_columns(self, mapping_store, ticket_store):
        engine = ReconciliationEngine(mapping_store, ticket_store, ColumnCache())
        with patch.object(
            mapping_store, "list_known_columns", side_effect=SQLAlchemyError("boom")
        ):
            assert engine.known_columns() == frozenset()

        assert "headline" in engine.known_columns()
