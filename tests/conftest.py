"""
Shared fixtures for the SubScout test suite.
"""

import pytest

from subscout.database import DatabaseManager
from subscout.database.locks import EntityLockManager
from subscout.detection import ServiceCatalog, SubscriptionDetector, SubscriptionRegistry
from subscout.import_sessions import ImportSessionManager
from subscout.unsubscribe.orchestrator import UnsubscribeOrchestrator
from subscout.users import UserDirectory

from helpers import T0, ScriptedCapability, fact


@pytest.fixture
def db():
    """In-memory database with all tables."""
    manager = DatabaseManager("sqlite:///:memory:")
    manager.initialize_database()
    yield manager
    manager.engine.dispose()


@pytest.fixture
def file_db(tmp_path):
    """File-backed database, shared by all threads of a test."""
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'subscout-test.db'}")
    manager.initialize_database()
    yield manager
    manager.engine.dispose()


@pytest.fixture
def locks():
    return EntityLockManager()


@pytest.fixture
def directory(db, locks):
    return UserDirectory(db, locks)


@pytest.fixture
def user_id(directory):
    return directory.create_user('alice@example.com', full_name='Alice', now=T0)


@pytest.fixture
def sessions(db, locks):
    return ImportSessionManager(db, locks)


@pytest.fixture
def catalog(db):
    return ServiceCatalog(db)


@pytest.fixture
def registry(db, locks):
    return SubscriptionRegistry(db, locks)


@pytest.fixture
def detector(db, catalog, registry, sessions, locks):
    return SubscriptionDetector(db, catalog=catalog, registry=registry, sessions=sessions, lock_manager=locks)


@pytest.fixture
def capability():
    return ScriptedCapability()


@pytest.fixture
def orchestrator(db, capability, locks):
    orchestrator = UnsubscribeOrchestrator(db, capability=capability, lock_manager=locks,
                                           max_retries=3, max_attempts=3, monitoring_days=7,
                                           retry_base_seconds=60, retry_cap_seconds=3600,
                                           execute_timeout=5)
    return orchestrator


@pytest.fixture
def netflix(detector, user_id):
    """An active Netflix subscription with an unsubscribe link."""
    result = detector.process(fact(user_id, unsubscribe_link='https://netflix.com/cancel',
                                   sender_domain='netflix.com', observed_at=T0), now=T0)
    return result.subscription_id
