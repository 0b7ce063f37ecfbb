"""Records lapsed grants in the audit ledger.

Housekeeping only: access decisions compute expiry themselves and never
read ``expiry_recorded_at``.
"""
from __future__ import annotations

from datetime import datetime
import logging
from typing import List

from sqlmodel import Session, select

from ..domain.clock import as_utc_naive
from ..domain.models import GrantAuditAction, PatientGrant
from .ledger import GrantAuditLedger

logger = logging.getLogger(__name__)


class ExpirySweeper:
    def __init__(self, session: Session) -> None:
        self.session = session

    def record_expirations(self, now: datetime) -> List[str]:
        """Append an ``expired`` entry for each newly lapsed grant; return their ids."""
        now = as_utc_naive(now)
        stmt = (
            select(PatientGrant)
            .where(
                PatientGrant.revoked_at.is_(None),
                PatientGrant.expires_at.is_not(None),
                PatientGrant.expires_at <= now,
                PatientGrant.expiry_recorded_at.is_(None),
            )
            .order_by(PatientGrant.expires_at, PatientGrant.id)
        )
        ledger = GrantAuditLedger(self.session)
        recorded = []
        for row in self.session.exec(stmt).all():
            row.expiry_recorded_at = now
            self.session.add(row)
            ledger.append(
                row,
                GrantAuditAction.EXPIRED,
                changed_by=None,
                previous_state=None,
                at=now,
            )
            recorded.append(row.id)
        if recorded:
            logger.info("recorded %s expired grants", len(recorded))
        return recorded
