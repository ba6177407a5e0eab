import os

# Must be set before anything under src/ creates the module-level engine.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RECONCILIATION_SCHEDULER_ENABLED"] = "false"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.application.reconciliation_service import ReconciliationService
from src.infrastructure.db.models import Base
from src.infrastructure.notifications.notification_service import NotificationDispatcher
from tests.support import NOW, RecordingSink, WeddingBuilder


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def dispatcher(sink):
    dispatcher = NotificationDispatcher(sink)
    yield dispatcher
    dispatcher.shutdown(wait=True)


@pytest.fixture
def service(session_factory, dispatcher):
    return ReconciliationService(session_factory, dispatcher, clock=lambda: NOW)


@pytest.fixture
def wedding(session_factory):
    return WeddingBuilder(session_factory)
