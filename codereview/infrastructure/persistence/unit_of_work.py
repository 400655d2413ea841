"""
Unit of Work for short-lived database sessions.

Every state-changing operation of the analysis pipeline runs in its own
session and commits before returning, so a subsequent read from any other
session (another worker, the scheduler, an HTTP request) sees the write.
"""

import logging
from typing import Callable

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class UnitOfWork:
    """
    Context manager that opens a session, commits on success and rolls back
    on error.

    Usage:
        with UnitOfWork(SessionLocal) as uow:
            uow.session.add(...)
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory
        self.session: Session = None

    def __enter__(self) -> "UnitOfWork":
        self.session = self._session_factory()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        try:
            if exc_type is None:
                self.session.commit()
            else:
                logger.debug(f"Rolling back unit of work after {exc_type.__name__}")
                self.session.rollback()
        finally:
            self.session.close()
