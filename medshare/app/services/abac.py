"""Access evaluator: loads the ownership fact and grant snapshot, then decides."""
import asyncio
from datetime import datetime
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ..domain.errors import PermissionDenied, SourceUnavailable
from ..domain.models import Grant, GrantSlot, PatientGrant
from ..domain.policy import AccessDecision, Action, evaluate
from ..infra.db import SessionFactory
from .directory import UserDirectory

logger = logging.getLogger(__name__)


class AccessEvaluator:
    def __init__(self, session: Session) -> None:
        self.session = session

    def current_grant(self, patient_id: str, grantee_id: str) -> Grant | None:
        """The grant the (patient, grantee) slot points at, active or not."""
        slot = self.session.get(GrantSlot, (patient_id, grantee_id))
        if slot is None or slot.grant_id is None:
            return None
        row = self.session.get(PatientGrant, slot.grant_id)
        return Grant.model_validate(row) if row else None

    def decide(
        self,
        subject_id: str,
        patient_id: str,
        action: Action,
        now: datetime,
    ) -> AccessDecision:
        """Raises ``NotFound`` for an unknown patient."""
        owner_id = UserDirectory(self.session).get_owner(patient_id)
        grant = None if subject_id == owner_id else self.current_grant(patient_id, subject_id)
        decision = evaluate(subject_id, action, owner_id=owner_id, grant=grant, now=now)
        logger.debug(
            "access %s: subject=%s patient=%s action=%s level=%s",
            "granted" if decision.granted else "denied",
            subject_id,
            patient_id,
            action.value,
            decision.level.value if decision.level else None,
        )
        return decision

    def enforce(
        self,
        subject_id: str,
        patient_id: str,
        action: Action,
        now: datetime,
    ) -> AccessDecision:
        decision = self.decide(subject_id, patient_id, action, now)
        if not decision.granted:
            logger.info(
                "access denied: subject=%s patient=%s action=%s",
                subject_id,
                patient_id,
                action.value,
            )
            raise PermissionDenied(
                f"{subject_id} may not {action.value} for patient {patient_id}"
            )
        return decision


async def check_access(
    session_factory: SessionFactory,
    subject_id: str,
    patient_id: str,
    action: Action,
    now: datetime,
) -> AccessDecision:
    """Run ``AccessEvaluator.enforce`` off the event loop with its own session."""

    def run() -> AccessDecision:
        try:
            with session_factory() as session:
                return AccessEvaluator(session).enforce(subject_id, patient_id, action, now)
        except SQLAlchemyError as exc:
            raise SourceUnavailable("access data unavailable") from exc

    return await asyncio.to_thread(run)
