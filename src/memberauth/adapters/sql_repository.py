"""ABOUTME: SQLAlchemy implementations of repository interfaces
ABOUTME: Provides concrete credential store operations using SQLAlchemy sessions"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy.orm import Session

from memberauth.adapters import orm
from memberauth.domain.audit import AuditEvent
from memberauth.domain.members import Member
from memberauth.domain.password_history import PasswordHistoryEntry
from memberauth.domain.password_reset import PasswordResetToken
from memberauth.domain.value_objects import AuditAction, normalise_email
from memberauth.service_layer.repositories import (
    AuditEventRepository,
    MemberRepository,
    PasswordHistoryRepository,
    PasswordResetTokenRepository,
)


class SqlAlchemyRepository:
    """Base SQLAlchemy repository with common functionality."""

    def __init__(self, session: Session) -> None:
        self.session = session


class SqlAlchemyMemberRepository(SqlAlchemyRepository, MemberRepository):
    """SQLAlchemy implementation of MemberRepository."""

    def add(self, item: Member) -> None:
        self.session.add(item)

    def get(self, item_id: uuid.UUID) -> Member | None:
        return self.session.query(Member).filter_by(id=item_id).first()

    def all(self) -> Iterable[Member]:
        return self.session.query(Member).order_by(orm.members.c.email).all()

    def get_by_email(self, email: str) -> Member | None:
        return self.session.query(Member).filter_by(email=normalise_email(email)).first()

    def get_by_session_id(self, session_id: str) -> Member | None:
        return self.session.query(Member).filter_by(current_session_id=session_id).first()

    def get_for_update(self, member_id: uuid.UUID) -> Member | None:
        # populate_existing so a row already in the identity map is refreshed from the locked read
        return (
            self.session.query(Member)
            .filter_by(id=member_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_session_id(self, member_id: uuid.UUID) -> str | None:
        return (
            self.session.query(orm.members.c.current_session_id)
            .filter(orm.members.c.id == member_id)
            .scalar()
        )


class SqlAlchemyAuditEventRepository(SqlAlchemyRepository, AuditEventRepository):
    """SQLAlchemy implementation of AuditEventRepository."""

    def add(self, item: AuditEvent) -> None:
        self.session.add(item)

    def get(self, item_id: uuid.UUID) -> AuditEvent | None:
        return self.session.query(AuditEvent).filter_by(id=item_id).first()

    def all(self) -> Iterable[AuditEvent]:
        return self.session.query(AuditEvent).order_by(orm.audit_events.c.timestamp).all()

    def count_events(self, member_id: uuid.UUID, action: AuditAction, since: datetime) -> int:
        return (
            self.session.query(AuditEvent)
            .filter(
                orm.audit_events.c.member_id == member_id,
                orm.audit_events.c.action == action,
                orm.audit_events.c.timestamp >= since,
            )
            .count()
        )

    def events_for_member(self, member_id: uuid.UUID, limit: int = 50) -> list[AuditEvent]:
        return (
            self.session.query(AuditEvent)
            .filter(orm.audit_events.c.member_id == member_id)
            .order_by(orm.audit_events.c.timestamp.desc())
            .limit(limit)
            .all()
        )


class SqlAlchemyPasswordHistoryRepository(SqlAlchemyRepository, PasswordHistoryRepository):
    """SQLAlchemy implementation of PasswordHistoryRepository."""

    def add(self, item: PasswordHistoryEntry) -> None:
        self.session.add(item)

    def get(self, item_id: uuid.UUID) -> PasswordHistoryEntry | None:
        return self.session.query(PasswordHistoryEntry).filter_by(id=item_id).first()

    def all(self) -> Iterable[PasswordHistoryEntry]:
        return self.session.query(PasswordHistoryEntry).all()

    def recent_for_member(self, member_id: uuid.UUID, limit: int) -> list[PasswordHistoryEntry]:
        if limit <= 0:
            return []
        return (
            self.session.query(PasswordHistoryEntry)
            .filter(orm.password_history.c.member_id == member_id)
            .order_by(orm.password_history.c.superseded_at.desc())
            .limit(limit)
            .all()
        )


class SqlAlchemyPasswordResetTokenRepository(SqlAlchemyRepository, PasswordResetTokenRepository):
    """SQLAlchemy implementation of PasswordResetTokenRepository."""

    def add(self, item: PasswordResetToken) -> None:
        self.session.add(item)

    def get(self, item_id: uuid.UUID) -> PasswordResetToken | None:
        return self.session.query(PasswordResetToken).filter_by(id=item_id).first()

    def all(self) -> Iterable[PasswordResetToken]:
        return self.session.query(PasswordResetToken).all()

    def get_by_token(self, token: str) -> PasswordResetToken | None:
        return self.session.query(PasswordResetToken).filter_by(token=token).first()

    def tokens_for_member(self, member_id: uuid.UUID) -> list[PasswordResetToken]:
        return (
            self.session.query(PasswordResetToken)
            .filter(orm.password_reset_tokens.c.member_id == member_id)
            .order_by(orm.password_reset_tokens.c.created_at.desc())
            .all()
        )
