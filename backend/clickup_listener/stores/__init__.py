"""Stores for configurations, identifier mappings and the local tracker."""

from sqlalchemy.orm import Session

from .base import (
    CommentMapping,
    Configuration,
    MappingStore,
    StatusLabel,
    TaskMapping,
    TicketSnapshot,
    TicketStore,
)
from .sql import SqlMappingStore, SqlTicketStore

__all__ = [
    "CommentMapping",
    "Configuration",
    "MappingStore",
    "StatusLabel",
    "TaskMapping",
    "TicketSnapshot",
    "TicketStore",
    "SqlMappingStore",
    "SqlTicketStore",
    "get_stores",
]


def get_stores(db: Session) -> tuple[MappingStore, TicketStore]:
    """Get the SQL-backed stores bound to a session.

    Args:
        db: Database session for the current request

    Returns:
        Tuple of (mapping store, ticket store)
    """
    return SqlMappingStore(db), SqlTicketStore(db)
