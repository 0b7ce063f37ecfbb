"""Grant store: create, revise, revoke and list patient share grants.

Public operations are coroutines. Each one runs its blocking SQLModel work
in a worker thread with a session of its own, so concurrent calls never
share a session.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
import logging
from typing import Any, Callable, List, Optional, TypeVar

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from ..domain.clock import as_utc_naive
from ..domain.errors import (
    ConflictRace,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    SharingError,
    SourceUnavailable,
)
from ..domain.models import (
    AccessLevel,
    Grant,
    GrantAuditAction,
    GrantSlot,
    ListedGrant,
    PatientGrant,
    RevokeReason,
)
from ..domain.policy import Action
from ..infra.db import SessionFactory, get_session
from .abac import AccessEvaluator
from .directory import UserDirectory
from .ledger import GrantAuditLedger, grant_state

logger = logging.getLogger(__name__)

T = TypeVar("T")


def coerce_level(level: AccessLevel | str) -> AccessLevel:
    try:
        return AccessLevel(level)
    except ValueError as exc:
        raise InvalidArgument(f"unknown access level {level!r}") from exc


def active_grants_clause(now: datetime):
    return (
        PatientGrant.revoked_at.is_(None),
        or_(PatientGrant.expires_at.is_(None), PatientGrant.expires_at > now),
    )


class GrantStore:
    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self.session_factory = session_factory

    async def create_or_replace_grant(
        self,
        patient_id: str,
        grantor_id: str,
        grantee_id: str,
        level: AccessLevel | str,
        expires_at: Optional[datetime] = None,
        *,
        now: datetime,
    ) -> Grant:
        return await self._run(
            self._create_or_replace, patient_id, grantor_id, grantee_id, level, expires_at, now
        )

    async def create_or_replace_grant_by_email(
        self,
        patient_id: str,
        grantor_id: str,
        grantee_email: str,
        level: AccessLevel | str,
        expires_at: Optional[datetime] = None,
        *,
        now: datetime,
    ) -> Grant:
        def by_email(session: Session) -> Grant:
            grantee_id = UserDirectory(session).resolve_user_id_by_email(grantee_email)
            return self._create_or_replace(
                session, patient_id, grantor_id, grantee_id, level, expires_at, now
            )

        return await self._run(by_email)

    async def revise_level(
        self,
        grant_id: str,
        new_level: AccessLevel | str,
        caller_id: str,
        *,
        now: datetime,
    ) -> Grant:
        return await self._run(self._revise_level, grant_id, new_level, caller_id, now)

    async def revoke(self, grant_id: str, caller_id: str, *, now: datetime) -> None:
        await self._run(self._revoke, grant_id, caller_id, now)

    async def list_grants_for(self, patient_id: str, *, now: datetime) -> List[ListedGrant]:
        return await self._run(self._list, PatientGrant.patient_id == patient_id, now)

    async def list_grants_received_by(self, user_id: str, *, now: datetime) -> List[ListedGrant]:
        return await self._run(self._list, PatientGrant.grantee_user_id == user_id, now)

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._in_session, fn, *args)

    def _in_session(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            with self.session_factory() as session:
                return fn(session, *args)
        except SharingError:
            raise
        except IntegrityError as exc:
            raise ConflictRace("a concurrent grant write won the slot") from exc
        except SQLAlchemyError as exc:
            logger.exception("grant store I/O failed")
            raise SourceUnavailable("grant storage unavailable") from exc

    def _create_or_replace(
        self,
        session: Session,
        patient_id: str,
        grantor_id: str,
        grantee_id: str,
        level: AccessLevel | str,
        expires_at: Optional[datetime],
        now: datetime,
    ) -> Grant:
        level = coerce_level(level)
        now = as_utc_naive(now)
        expires_at = as_utc_naive(expires_at)
        if grantor_id == grantee_id:
            raise InvalidArgument("a user cannot grant access to themselves")
        if expires_at is not None and expires_at <= now:
            raise InvalidArgument("expires_at must be in the future")

        directory = UserDirectory(session)
        owner_id = directory.find_owner(patient_id)
        if owner_id is None:
            raise InvalidArgument(f"unknown patient {patient_id}")
        if not directory.user_exists(grantee_id):
            raise InvalidArgument(f"unknown grantee {grantee_id}")
        if grantee_id == owner_id:
            raise InvalidArgument("the owner already holds admin access")

        AccessEvaluator(session).enforce(grantor_id, patient_id, Action.MANAGE_SHARES, now)

        ledger = GrantAuditLedger(session)
        grant = PatientGrant(
            patient_id=patient_id,
            grantor_user_id=grantor_id,
            grantee_user_id=grantee_id,
            access_level=level,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        session.add(grant)

        slot = session.get(GrantSlot, (patient_id, grantee_id))
        if slot is None:
            # A concurrent insert of the same slot fails on the primary key.
            session.add(GrantSlot(patient_id=patient_id, grantee_user_id=grantee_id, grant_id=grant.id))
            session.flush()
        else:
            previous_id = slot.grant_id
            self._swap_slot(session, slot, grant.id)
            session.flush()
            previous = session.get(PatientGrant, previous_id) if previous_id else None
            if previous is not None and previous.revoked_at is None:
                before = grant_state(previous)
                previous.revoked_at = now
                previous.revoked_by = grantor_id
                previous.revoke_reason = RevokeReason.SUPERSEDED
                previous.updated_at = now
                session.add(previous)
                session.flush()
                ledger.append(
                    previous,
                    GrantAuditAction.REVOKED,
                    changed_by=grantor_id,
                    previous_state=before,
                    at=now,
                )

        ledger.append(grant, GrantAuditAction.CREATED, changed_by=grantor_id, previous_state=None, at=now)
        logger.info(
            "grant %s: %s gave %s %s access to patient %s",
            grant.id,
            grantor_id,
            grantee_id,
            level.value,
            patient_id,
        )
        return Grant.model_validate(grant)

    def _revise_level(
        self,
        session: Session,
        grant_id: str,
        new_level: AccessLevel | str,
        caller_id: str,
        now: datetime,
    ) -> Grant:
        level = coerce_level(new_level)
        now = as_utc_naive(now)
        row = session.get(PatientGrant, grant_id)
        if row is None or not Grant.model_validate(row).is_active(now):
            raise NotFound(f"grant {grant_id} not found or no longer active")
        self._authorize_change(session, row, caller_id, now)

        before = grant_state(row)
        row.access_level = level
        row.updated_at = now
        session.add(row)
        session.flush()
        GrantAuditLedger(session).append(
            row,
            GrantAuditAction.MODIFIED,
            changed_by=caller_id,
            previous_state=before,
            at=now,
        )
        logger.info("grant %s revised to %s by %s", grant_id, level.value, caller_id)
        return Grant.model_validate(row)

    def _revoke(self, session: Session, grant_id: str, caller_id: str, now: datetime) -> None:
        now = as_utc_naive(now)
        row = session.get(PatientGrant, grant_id)
        if row is None:
            raise NotFound(f"grant {grant_id} not found")
        self._authorize_change(session, row, caller_id, now)
        if row.revoked_at is not None:
            return

        before = grant_state(row)
        row.revoked_at = now
        row.revoked_by = caller_id
        row.revoke_reason = RevokeReason.REVOKED
        row.updated_at = now
        session.add(row)
        slot = session.get(GrantSlot, (row.patient_id, row.grantee_user_id))
        if slot is not None and slot.grant_id == row.id:
            self._swap_slot(session, slot, None)
        session.flush()
        GrantAuditLedger(session).append(
            row,
            GrantAuditAction.REVOKED,
            changed_by=caller_id,
            previous_state=before,
            at=now,
        )
        logger.info("grant %s revoked by %s", grant_id, caller_id)

    def _list(self, session: Session, criterion, now: datetime) -> List[ListedGrant]:
        now = as_utc_naive(now)
        stmt = (
            select(PatientGrant)
            .where(criterion, *active_grants_clause(now))
            .order_by(PatientGrant.created_at, PatientGrant.id)
        )
        listed = []
        for row in session.exec(stmt).all():
            grant = ListedGrant.model_validate(row)
            listed.append(grant.model_copy(update={"is_expiring_soon": grant.expires_within(now)}))
        return listed

    @staticmethod
    def _authorize_change(session: Session, row: PatientGrant, caller_id: str, now: datetime) -> None:
        """Only the original grantor or an admin-level holder may change a grant."""
        if caller_id == row.grantor_user_id:
            return
        decision = AccessEvaluator(session).decide(caller_id, row.patient_id, Action.MANAGE_SHARES, now)
        if not decision.granted:
            raise PermissionDenied(f"{caller_id} may not change grant {row.id}")

    @staticmethod
    def _swap_slot(session: Session, slot: GrantSlot, grant_id: Optional[str]) -> None:
        """Compare-and-swap the slot's grant pointer on its version."""
        result = session.exec(
            update(GrantSlot)
            .where(
                GrantSlot.patient_id == slot.patient_id,
                GrantSlot.grantee_user_id == slot.grantee_user_id,
                GrantSlot.version == slot.version,
            )
            .values(grant_id=grant_id, version=slot.version + 1)
        )
        if result.rowcount != 1:
            raise ConflictRace(
                f"grant slot for patient {slot.patient_id} / {slot.grantee_user_id} changed concurrently"
            )
