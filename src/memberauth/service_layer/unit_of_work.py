"""ABOUTME: Unit of Work pattern implementation for transaction management
ABOUTME: Coordinates credential store repositories within database transactions"""

from __future__ import annotations

import abc
import logging
from types import TracebackType

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from memberauth.adapters.database import create_session_factory
from memberauth.adapters.sql_repository import (
    SqlAlchemyAuditEventRepository,
    SqlAlchemyMemberRepository,
    SqlAlchemyPasswordHistoryRepository,
    SqlAlchemyPasswordResetTokenRepository,
)
from memberauth.service_layer.exceptions import ConcurrentUpdateError, TransientError
from memberauth.service_layer.repositories import (
    AuditEventRepository,
    MemberRepository,
    PasswordHistoryRepository,
    PasswordResetTokenRepository,
)

logger = logging.getLogger(__name__)


class AbstractUnitOfWork(abc.ABC):
    """Abstract Unit of Work interface."""

    members: MemberRepository
    audit_events: AuditEventRepository
    password_history: PasswordHistoryRepository
    password_reset_tokens: PasswordResetTokenRepository

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None:
        """Commit the current transaction."""
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self) -> None:
        """Rollback the current transaction."""
        raise NotImplementedError


_default_session_factory: sessionmaker | None = None


def default_session_factory() -> sessionmaker:
    """Build the session factory from the environment on first use."""
    global _default_session_factory
    if _default_session_factory is None:
        _default_session_factory = create_session_factory()
    return _default_session_factory


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """SQLAlchemy implementation of Unit of Work pattern.

    Driver errors are logged here and re-raised as TransientError, so callers only
    ever see the opaque failure. Optimistic version conflicts become ConcurrentUpdateError.
    """

    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self.session_factory = session_factory or default_session_factory()
        self._session: Session | None = None

    @property
    def session(self) -> Session:
        if self._session is None:
            self._session = self.session_factory()
        assert isinstance(self._session, Session)
        return self._session

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        self.members = SqlAlchemyMemberRepository(self.session)
        self.audit_events = SqlAlchemyAuditEventRepository(self.session)
        self.password_history = SqlAlchemyPasswordHistoryRepository(self.session)
        self.password_reset_tokens = SqlAlchemyPasswordResetTokenRepository(self.session)

        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is not None:
                self.rollback()
            else:
                self.commit()
        finally:
            self.session.close()
            self._session = None

        if isinstance(exc_val, StaleDataError):
            raise ConcurrentUpdateError() from exc_val
        if isinstance(exc_val, DBAPIError):
            logger.error(f"Database error in unit of work: {exc_val}")
            raise TransientError() from exc_val

    def commit(self) -> None:
        """Commit the current transaction."""
        try:
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            logger.warning(f"Concurrent update detected on commit: {e}")
            raise ConcurrentUpdateError() from e
        except DBAPIError as e:
            self.session.rollback()
            logger.error(f"Database error on commit: {e}")
            raise TransientError() from e

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.session.rollback()

    def flush(self) -> None:
        """Flush pending changes to the database without committing."""
        self.session.flush()
