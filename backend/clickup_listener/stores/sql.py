"""SQLAlchemy implementations of the mapping and ticket stores."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import inspect, or_
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import (
    DELETED_STATUS,
    Comment,
    CommentMap,
    HookConfig,
    Project,
    TaskMap,
    Ticket,
    TicketStatus,
)
from ..tags import split_tags
from .base import (
    CommentMapping,
    Configuration,
    MappingStore,
    StatusLabel,
    TaskMapping,
    TicketSnapshot,
    TicketStore,
)

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _to_configuration(row: HookConfig) -> Configuration:
    return Configuration(
        id=row.id,
        webhook_id=row.webhook_id,
        hook_secret=row.hook_secret or "",
        project_id=row.project_id or 0,
        task_tag=row.task_tag or "",
    )


def _to_task_mapping(row: TaskMap) -> TaskMapping:
    return TaskMapping(
        config_id=row.config_id,
        clickup_task_id=row.clickup_task_id,
        ticket_id=row.ticket_id,
        parent_clickup_task_id=row.parent_clickup_task_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_comment_mapping(row: CommentMap) -> CommentMapping:
    return CommentMapping(
        config_id=row.config_id,
        clickup_comment_id=row.clickup_comment_id,
        clickup_task_id=row.clickup_task_id,
        ticket_id=row.ticket_id,
        comment_id=row.comment_id,
        created_at=row.created_at,
    )


def coerce_value(column, value):
    """Convert a string value to the column's Python type.

    Raises:
        ValueError: If the string does not fit the column
    """
    if not isinstance(value, str):
        return value
    python_type = column.type.python_type
    if python_type is str:
        return value
    if value == "":
        return None
    if python_type is datetime:
        return datetime.strptime(value, DATE_FORMAT)
    if python_type is int:
        return int(value)
    if python_type is float:
        return float(value)
    return value


def coerce_fields(model, fields: dict) -> dict:
    """Keep the fields the model has, converted to their column types.

    Fields that do not exist or cannot be converted are dropped.
    """
    columns = model.__table__.c
    values = {}
    for key, value in fields.items():
        if key not in columns:
            logger.warning(f"Dropping unknown {model.__tablename__} field {key}")
            continue
        try:
            values[key] = coerce_value(columns[key], value)
        except (ValueError, TypeError, NotImplementedError):
            logger.warning(
                f"Dropping {model.__tablename__}.{key}: cannot store {value!r}"
            )
    return values


class SqlMappingStore(MappingStore):
    """Mapping store backed by the ``clickup_*`` tables."""

    def __init__(self, db: Session):
        self.db = db

    def _upsert(self, model, values: dict, index_elements: list[str], set_: dict):
        """Run an INSERT that updates ``set_`` (or does nothing) on conflict."""
        dialect = self.db.get_bind().dialect.name

        if dialect in ("mysql", "mariadb"):
            stmt = mysql_insert(model).values(**values)
            if set_:
                stmt = stmt.on_duplicate_key_update(**set_)
            else:
                stmt = stmt.prefix_with("IGNORE")
        elif dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert(model).values(**values)
            if set_:
                stmt = stmt.on_conflict_do_update(
                    index_elements=index_elements, set_=set_
                )
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
        else:
            raise NotImplementedError(f"Upsert not supported for {dialect}")

        try:
            self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    # Configurations

    def list_configurations(self) -> list[Configuration]:
        rows = self.db.query(HookConfig).order_by(HookConfig.id.desc()).all()
        return [_to_configuration(row) for row in rows]

    def get_configuration(self, config_id: int) -> Optional[Configuration]:
        row = self.db.query(HookConfig).filter(HookConfig.id == config_id).first()
        return _to_configuration(row) if row else None

    def save_configuration(
        self,
        webhook_id: Optional[str],
        hook_secret: str,
        project_id: int,
        task_tag: str,
    ) -> int:
        try:
            if webhook_id:
                self.db.query(HookConfig).filter(
                    HookConfig.webhook_id == webhook_id
                ).delete(synchronize_session=False)
            row = HookConfig(
                webhook_id=webhook_id or None,
                hook_secret=hook_secret or "",
                project_id=project_id,
                task_tag=task_tag or "",
            )
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return row.id

    # Task mappings

    def lookup_task_map(
        self, config_id: int, clickup_task_id: str
    ) -> Optional[TaskMapping]:
        row = (
            self.db.query(TaskMap)
            .filter(
                TaskMap.config_id == config_id,
                TaskMap.clickup_task_id == clickup_task_id,
            )
            .first()
        )
        return _to_task_mapping(row) if row else None

    def list_task_maps_by_parent(
        self, config_id: int, parent_clickup_task_id: str
    ) -> list[TaskMapping]:
        rows = (
            self.db.query(TaskMap)
            .filter(
                TaskMap.config_id == config_id,
                TaskMap.parent_clickup_task_id == parent_clickup_task_id,
            )
            .order_by(TaskMap.id)
            .all()
        )
        return [_to_task_mapping(row) for row in rows]

    def upsert_task_map(
        self,
        config_id: int,
        clickup_task_id: str,
        ticket_id: int,
        parent_clickup_task_id: Optional[str] = None,
    ) -> None:
        now = datetime.utcnow()
        values = {
            "config_id": config_id,
            "clickup_task_id": clickup_task_id,
            "parent_clickup_task_id": parent_clickup_task_id,
            "ticket_id": ticket_id,
            "created_at": now,
            "updated_at": now,
        }
        set_ = {"ticket_id": ticket_id, "updated_at": now}
        if parent_clickup_task_id is not None:
            set_["parent_clickup_task_id"] = parent_clickup_task_id
        self._upsert(TaskMap, values, ["config_id", "clickup_task_id"], set_)

    def update_task_map_parent(
        self,
        config_id: int,
        clickup_task_id: str,
        parent_clickup_task_id: Optional[str],
    ) -> None:
        try:
            self.db.query(TaskMap).filter(
                TaskMap.config_id == config_id,
                TaskMap.clickup_task_id == clickup_task_id,
            ).update(
                {
                    "parent_clickup_task_id": parent_clickup_task_id,
                    "updated_at": datetime.utcnow(),
                },
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    # Comment mappings

    def lookup_comment_map(
        self, config_id: int, clickup_comment_id: str
    ) -> Optional[CommentMapping]:
        row = (
            self.db.query(CommentMap)
            .filter(
                CommentMap.config_id == config_id,
                CommentMap.clickup_comment_id == clickup_comment_id,
            )
            .first()
        )
        return _to_comment_mapping(row) if row else None

    def upsert_comment_map(
        self,
        config_id: int,
        clickup_comment_id: str,
        clickup_task_id: str,
        ticket_id: int,
        comment_id: int,
    ) -> None:
        values = {
            "config_id": config_id,
            "clickup_comment_id": clickup_comment_id,
            "clickup_task_id": clickup_task_id,
            "ticket_id": ticket_id,
            "comment_id": comment_id,
            "created_at": datetime.utcnow(),
        }
        self._upsert(CommentMap, values, ["config_id", "clickup_comment_id"], {})

    def delete_comment_map(self, config_id: int, clickup_comment_id: str) -> None:
        try:
            self.db.query(CommentMap).filter(
                CommentMap.config_id == config_id,
                CommentMap.clickup_comment_id == clickup_comment_id,
            ).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    # Tickets

    def find_duplicate_ticket(
        self, project_id: int, headline: str, tags: list[str]
    ) -> Optional[int]:
        rows = (
            self.db.query(Ticket)
            .filter(
                Ticket.project_id == project_id,
                Ticket.headline == headline,
                or_(Ticket.status.is_(None), Ticket.status != DELETED_STATUS),
            )
            .order_by(Ticket.id)
            .all()
        )
        for row in rows:
            ticket_tags = split_tags(row.tags)
            if all(tag in ticket_tags for tag in tags):
                return row.id
        return None

    def list_known_columns(self) -> set[str]:
        columns = inspect(self.db.connection()).get_columns(Ticket.__tablename__)
        return {column["name"] for column in columns}


class SqlTicketStore(TicketStore):
    """Ticket store backed by the ``tickets`` and ``comments`` tables."""

    def __init__(self, db: Session):
        self.db = db

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def create_ticket(self, fields: dict) -> int:
        ticket = Ticket(**coerce_fields(Ticket, fields))
        self.db.add(ticket)
        self._commit()
        logger.info(f"Created ticket {ticket.id} in project {ticket.project_id}")
        return ticket.id

    def patch_ticket(self, ticket_id: int, fields: dict) -> None:
        values = coerce_fields(Ticket, fields)
        if not values:
            return
        self.db.query(Ticket).filter(Ticket.id == ticket_id).update(
            values, synchronize_session=False
        )
        self._commit()
        logger.info(f"Patched ticket {ticket_id}: {sorted(values)}")

    def get_ticket(self, ticket_id: int) -> Optional[TicketSnapshot]:
        row = self.db.query(Ticket).filter(Ticket.id == ticket_id).first()
        if row is None:
            return None
        return TicketSnapshot(
            id=row.id,
            project_id=row.project_id,
            headline=row.headline,
            tags=row.tags or "",
            parent_ticket_id=row.parent_ticket_id,
            status=row.status,
            priority=row.priority,
        )

    def project_exists(self, project_id: int) -> bool:
        return (
            self.db.query(Project.id).filter(Project.id == project_id).first()
            is not None
        )

    def resolve_status_id(self, label: str, project_id: int) -> Optional[int]:
        row = (
            self.db.query(TicketStatus)
            .filter(TicketStatus.project_id == project_id, TicketStatus.name == label)
            .order_by(TicketStatus.sort_order, TicketStatus.id)
            .first()
        )
        return row.id if row else None

    def list_status_labels(self, project_id: int) -> list[StatusLabel]:
        rows = (
            self.db.query(TicketStatus)
            .filter(TicketStatus.project_id == project_id)
            .order_by(TicketStatus.sort_order, TicketStatus.id)
            .all()
        )
        return [
            StatusLabel(id=row.id, name=row.name, status_type=row.status_type)
            for row in rows
        ]

    def create_comment(self, fields: dict, module: str = "ticket") -> int:
        comment = Comment(module=module, **coerce_fields(Comment, fields))
        self.db.add(comment)
        self._commit()
        logger.info(f"Created comment {comment.id} on {module} {comment.module_id}")
        return comment.id

    def edit_comment(self, text: str, comment_id: int) -> None:
        self.db.query(Comment).filter(Comment.id == comment_id).update(
            {"text": text}, synchronize_session=False
        )
        self._commit()

    def delete_comment(self, comment_id: int) -> None:
        self.db.query(Comment).filter(Comment.id == comment_id).delete(
            synchronize_session=False
        )
        self._commit()
