"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clickup_listener.engine import ReconciliationEngine
from clickup_listener.models import Base, Project, TicketStatus
from clickup_listener.schema_cache import ColumnCache
from clickup_listener.stores import SqlMappingStore, SqlTicketStore


@pytest.fixture
def db_session():
    """Create an in-memory database session for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def project(db_session):
    """Project 5 with New / In Progress / Done statuses."""
    project = Project(id=5, name="Website")
    db_session.add(project)
    db_session.add_all(
        [
            TicketStatus(project_id=5, name="New", status_type="NEW", sort_order=1),
            TicketStatus(
                project_id=5, name="In Progress", status_type="INPROGRESS", sort_order=2
            ),
            TicketStatus(project_id=5, name="Done", status_type="DONE", sort_order=3),
        ]
    )
    db_session.commit()
    return project


@pytest.fixture
def statuses(db_session, project):
    """Status name -> id for project 5."""
    rows = db_session.query(TicketStatus).filter(TicketStatus.project_id == 5).all()
    return {row.name: row.id for row in rows}


@pytest.fixture
def mapping_store(db_session):
    return SqlMappingStore(db_session)


@pytest.fixture
def ticket_store(db_session):
    return SqlTicketStore(db_session)


@pytest.fixture
def engine(mapping_store, ticket_store):
    """Reconciliation engine with a fresh column cache."""
    return ReconciliationEngine(mapping_store, ticket_store, ColumnCache())


@pytest.fixture
def config(mapping_store, project):
    """Unsigned configuration for project 5 tagging tickets "clickup"."""
    config_id = mapping_store.save_configuration(
        webhook_id="wh-open", hook_secret="", project_id=5, task_tag="clickup"
    )
    return mapping_store.get_configuration(config_id)


@pytest.fixture
def signed_config(mapping_store, project):
    """Configuration for project 5 with a shared secret."""
    config_id = mapping_store.save_configuration(
        webhook_id="wh-signed", hook_secret="s3cret", project_id=5, task_tag="clickup"
    )
    return mapping_store.get_configuration(config_id)
