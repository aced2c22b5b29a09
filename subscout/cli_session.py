"""
CLI session management utilities for dependency injection.
"""

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.orm import Session

from .database import DatabaseManager
from .database.locks import get_lock_manager
from .detection import ServiceCatalog, SubscriptionDetector, SubscriptionRegistry
from .import_sessions import ImportSessionManager
from .unsubscribe import (
    CancellationCapability, ConfirmationMonitor, ConfirmationSource, UnsubscribeOrchestrator
)
from .users import UserDirectory


class CLISessionManager:
    """Owns the database for CLI commands and builds the workflow components."""

    def __init__(self, database_url: Optional[str] = None):
        self.db_manager = DatabaseManager(database_url)
        self.lock_manager = get_lock_manager()

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a read-only database session with automatic cleanup."""
        session = self.db_manager.get_session()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def users(self) -> UserDirectory:
        return UserDirectory(self.db_manager, self.lock_manager)

    def import_sessions(self) -> ImportSessionManager:
        return ImportSessionManager(self.db_manager, self.lock_manager)

    def catalog(self) -> ServiceCatalog:
        return ServiceCatalog(self.db_manager)

    def detector(self) -> SubscriptionDetector:
        return SubscriptionDetector(
            self.db_manager,
            catalog=self.catalog(),
            registry=SubscriptionRegistry(self.db_manager, self.lock_manager),
            sessions=self.import_sessions(),
            lock_manager=self.lock_manager
        )

    def orchestrator(self, capability: Optional[CancellationCapability] = None) -> UnsubscribeOrchestrator:
        return UnsubscribeOrchestrator(self.db_manager, capability=capability, lock_manager=self.lock_manager)

    def monitor(self, orchestrator: UnsubscribeOrchestrator, source: ConfirmationSource) -> ConfirmationMonitor:
        return ConfirmationMonitor(orchestrator, source)


# Global CLI session manager instance
_cli_session_manager = None


def get_cli_session_manager(database_url: Optional[str] = None) -> CLISessionManager:
    """Get the global CLI session manager instance."""
    global _cli_session_manager
    if _cli_session_manager is None:
        _cli_session_manager = CLISessionManager(database_url)
    return _cli_session_manager


def configure_cli_session(database_url: Optional[str] = None) -> CLISessionManager:
    """Replace the global CLI session manager, e.g. for a ``--database-url`` override."""
    global _cli_session_manager
    _cli_session_manager = CLISessionManager(database_url)
    return _cli_session_manager
