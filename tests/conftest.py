"""ABOUTME: Pytest configuration and fixtures for memberauth tests
ABOUTME: Provides environment helpers, the TOTP master key, an SQLite session factory and service fakes"""

import base64
import os
import secrets

import pytest
from click.testing import CliRunner
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from memberauth.adapters import database, orm
from tests.fakes import FakeBotVerifier, FakeNotifier, FakeUnitOfWork, add_member


@pytest.fixture
def clear_env_vars():
    """Fixture to temporarily remove environment variables for testing."""
    original_vars = {}

    def _clear_env_vars(*args):
        for key in args:
            original_vars[key] = os.environ.get(key)
            os.environ.pop(key, None)

    yield _clear_env_vars

    for key, value in original_vars.items():
        if value is not None:
            os.environ[key] = value


@pytest.fixture
def temp_env_vars():
    """Fixture to temporarily set environment variables for testing."""
    original_vars = {}

    def _set_env_vars(**kwargs):
        for key, value in kwargs.items():
            original_vars[key] = os.environ.get(key)
            os.environ[key] = value

    yield _set_env_vars

    for key, value in original_vars.items():
        if value is not None:
            os.environ[key] = value
        else:
            os.environ.pop(key, None)


@pytest.fixture(autouse=True)
def totp_encryption_key():
    """Every test gets a fresh master key for TOTP secret encryption."""
    original = os.environ.get("TOTP_ENCRYPTION_KEY")
    key = base64.b64encode(secrets.token_bytes(32)).decode()
    os.environ["TOTP_ENCRYPTION_KEY"] = key
    yield key
    if original is not None:
        os.environ["TOTP_ENCRYPTION_KEY"] = original
    else:
        os.environ.pop("TOTP_ENCRYPTION_KEY", None)


@pytest.fixture
def uow():
    return FakeUnitOfWork()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def bot_verifier():
    return FakeBotVerifier()


@pytest.fixture
def member(uow):
    """A registered member with the standard strong password and no two-factor."""
    return add_member(uow, first_name="Ada")


@pytest.fixture
def in_memory_sqlite_db():
    return create_engine("sqlite:///:memory:")


@pytest.fixture
def sqlite_session_factory(in_memory_sqlite_db):
    orm.metadata.create_all(in_memory_sqlite_db)
    database.start_mappers()

    yield sessionmaker(bind=in_memory_sqlite_db, expire_on_commit=False)

    database.clear_mappers()
    orm.metadata.drop_all(in_memory_sqlite_db)


@pytest.fixture
def cli_with_session_factory(sqlite_session_factory):
    """Fixture that provides a Click runner with test session factory in context."""

    def _invoke_cli_with_context(cli_command, args, **kwargs):
        runner = CliRunner()
        return runner.invoke(cli_command, args, obj={"session_factory": sqlite_session_factory}, **kwargs)

    return _invoke_cli_with_context
