"""SQLAlchemy models for the ClickUp listener.

The ``clickup_*`` tables hold webhook configurations and the identifier
mappings. ``projects``, ``ticket_statuses``, ``tickets`` and ``comments``
are the local issue tracker the mappings point into.
"""

from datetime import datetime
from sqlalchemy import (
    create_engine,
    Column,
    String,
    Integer,
    Float,
    DateTime,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import get_settings

settings = get_settings()
engine = create_engine(settings.database_url, echo=settings.env == "development")
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Ticket status value used by the tracker for archived/deleted tickets
DELETED_STATUS = -1


class HookConfig(Base):
    """A webhook-to-project binding."""

    __tablename__ = "clickup_config"

    id = Column(Integer, primary_key=True, autoincrement=True)
    webhook_id = Column(String(255), nullable=True, index=True)
    hook_secret = Column(String(255), nullable=False, default="")
    project_id = Column(Integer, nullable=False)
    task_tag = Column(String(255), nullable=False, default="")


class TaskMap(Base):
    """ClickUp task id -> local ticket id, per configuration."""

    __tablename__ = "clickup_task_map"
    __table_args__ = (
        UniqueConstraint("config_id", "clickup_task_id", name="uniq_config_task"),
        Index("idx_config_parent", "config_id", "parent_clickup_task_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    config_id = Column(Integer, nullable=False)
    clickup_task_id = Column(String(255), nullable=False)
    parent_clickup_task_id = Column(String(255), nullable=True)
    ticket_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class CommentMap(Base):
    """ClickUp comment id -> local comment id, per configuration."""

    __tablename__ = "clickup_comment_map"
    __table_args__ = (
        UniqueConstraint(
            "config_id", "clickup_comment_id", name="uniq_config_comment"
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    config_id = Column(Integer, nullable=False)
    clickup_comment_id = Column(String(255), nullable=False)
    clickup_task_id = Column(String(255), nullable=False)
    ticket_id = Column(Integer, nullable=False)
    comment_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Project(Base):
    """Local project that tickets belong to."""

    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)


class TicketStatus(Base):
    """Per-project status label."""

    __tablename__ = "ticket_statuses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    status_type = Column(String(32), nullable=False)  # "NEW" | "INPROGRESS" | "DONE"
    sort_order = Column(Integer, default=0)


class Ticket(Base):
    """Local ticket."""

    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, nullable=False, index=True)
    headline = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    tags = Column(String(1024), nullable=False, default="")
    type = Column(String(64), nullable=False, default="task")
    status = Column(Integer, nullable=True)  # TicketStatus.id, -1 when deleted
    priority = Column(Integer, nullable=True)
    parent_ticket_id = Column(Integer, nullable=True)
    user_id = Column(Integer, default=0)
    editor_id = Column(Integer, default=0)

    # Fields ClickUp custom fields can be mapped onto
    date = Column(DateTime, nullable=True)
    date_to_finish = Column(DateTime, nullable=True)
    edit_from = Column(DateTime, nullable=True)
    edit_to = Column(DateTime, nullable=True)
    storypoints = Column(Float, nullable=True)
    plan_hours = Column(Float, nullable=True)
    hour_remaining = Column(Float, nullable=True)
    acceptance_criteria = Column(Text, nullable=True)
    sprint = Column(String(255), nullable=True)
    url = Column(String(1024), nullable=True)
    component = Column(String(255), nullable=True)
    version = Column(String(255), nullable=True)
    os = Column(String(255), nullable=True)
    browser = Column(String(255), nullable=True)
    resolution = Column(String(255), nullable=True)
    production = Column(Integer, nullable=True)
    staging = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Comment(Base):
    """Comment attached to a local record (module "ticket")."""

    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    module = Column(String(64), nullable=False, default="ticket")
    module_id = Column(Integer, nullable=False, index=True)
    user_id = Column(Integer, default=0)
    text = Column(Text, nullable=False)
    date = Column(DateTime, nullable=True)
    comment_parent = Column(Integer, default=0)
    status = Column(String(64), default="")


def init_db():
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
