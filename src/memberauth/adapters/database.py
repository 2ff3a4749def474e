"""ABOUTME: Database connection setup and imperative mapping for member authentication
ABOUTME: Configures SQLAlchemy sessions and maps domain objects to tables"""

from sqlalchemy import create_engine
from sqlalchemy.orm import clear_mappers as sqla_clear_mappers
from sqlalchemy.orm import sessionmaker

from memberauth.adapters import orm
from memberauth.config import bool_environ_get, get_db_uri
from memberauth.domain import audit, members, password_history, password_reset


class DatabaseError(Exception):
    """Base exception for database-related errors."""


def create_session_factory(database_url: str = "", echo: bool = False) -> sessionmaker:
    """Create a SQLAlchemy session factory with proper configuration."""
    database_url = database_url or get_db_uri()
    echo = bool_environ_get("DB_ECHO") or echo
    extra_args: dict[str, int | bool] = {}
    if database_url.startswith("postgresql://"):
        extra_args = {
            "pool_pre_ping": True,
            "pool_recycle": 3600,
            "pool_size": 10,
            "max_overflow": 20,
        }
    engine = create_engine(database_url, echo=echo, **extra_args)

    return sessionmaker(bind=engine, expire_on_commit=False)


_mappers_started = False


def start_mappers() -> None:
    """Start imperative mapping between domain objects and database tables.

    This function must be called before using any domain objects with SQLAlchemy.
    The mapping is done imperatively to keep domain objects independent of SQLAlchemy.
    """
    global _mappers_started

    if _mappers_started:
        return

    try:
        # the version column makes concurrent writers to one member row fail with StaleDataError
        orm.mapper_registry.map_imperatively(
            members.Member,
            orm.members,
            version_id_col=orm.members.c.version,
        )
        orm.mapper_registry.map_imperatively(audit.AuditEvent, orm.audit_events)
        orm.mapper_registry.map_imperatively(password_history.PasswordHistoryEntry, orm.password_history)
        orm.mapper_registry.map_imperatively(password_reset.PasswordResetToken, orm.password_reset_tokens)

        _mappers_started = True

    except Exception as e:  # pragma: no cover
        raise DatabaseError(f"Failed to start mappers: {e}") from e


def clear_mappers() -> None:
    sqla_clear_mappers()

    global _mappers_started
    _mappers_started = False
