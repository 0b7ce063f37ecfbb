"""Append-only, hash-chained audit ledger for grant changes."""
from __future__ import annotations

from datetime import datetime
from itertools import groupby
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from ..domain.merkle import compute_chain_hash, verify_links
from ..domain.models import GrantAuditAction, GrantAuditEntry, Patient, PatientGrant


def grant_state(row: PatientGrant) -> Dict[str, Any]:
    """JSON-safe view of the mutable fields of a grant."""
    return {
        "access_level": row.access_level.value,
        "expires_at": row.expires_at.isoformat() if row.expires_at else None,
        "revoked_at": row.revoked_at.isoformat() if row.revoked_at else None,
        "revoke_reason": row.revoke_reason.value if row.revoke_reason else None,
    }


def hash_material(entry: GrantAuditEntry) -> Dict[str, Any]:
    return {
        "sequence": entry.sequence,
        "grant_id": entry.grant_id,
        "patient_id": entry.patient_id,
        "action": entry.action.value,
        "previous_state": entry.previous_state,
        "new_state": entry.new_state,
        "changed_by_user_id": entry.changed_by_user_id,
        "created_at": entry.created_at.isoformat(),
    }


class GrantAuditLedger:
    """Audit trail of grant changes.

    Each patient has its own SHA-256 chain with its own sequence, so writes for
    different patients never contend for the same head.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def append(
        self,
        grant: PatientGrant,
        action: GrantAuditAction,
        *,
        changed_by: Optional[str],
        previous_state: Optional[Dict[str, Any]],
        at: datetime,
    ) -> GrantAuditEntry:
        sequence, prev_hash = self._head(grant.patient_id)
        entry = GrantAuditEntry(
            sequence=sequence + 1,
            grant_id=grant.id,
            patient_id=grant.patient_id,
            action=action,
            previous_state=previous_state or {},
            new_state=grant_state(grant),
            changed_by_user_id=changed_by,
            prev_hash=prev_hash,
            created_at=at,
        )
        entry.curr_hash = compute_chain_hash(hash_material(entry), prev_hash)
        self.session.add(entry)
        self.session.flush()
        return entry

    def list(
        self,
        grant_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        action: Optional[GrantAuditAction] = None,
        limit: int = 100,
    ) -> List[GrantAuditEntry]:
        stmt = (
            select(GrantAuditEntry)
            .order_by(GrantAuditEntry.created_at.desc(), GrantAuditEntry.sequence.desc())
            .limit(limit)
        )
        if grant_id:
            stmt = stmt.where(GrantAuditEntry.grant_id == grant_id)
        if patient_id:
            stmt = stmt.where(GrantAuditEntry.patient_id == patient_id)
        if action:
            stmt = stmt.where(GrantAuditEntry.action == action)
        return list(self.session.exec(stmt).all())

    def verify(self) -> Dict[str, Any]:
        """Recompute every patient chain; ``ok`` is False if any link was altered."""
        entries = self.session.exec(
            select(GrantAuditEntry).order_by(
                GrantAuditEntry.patient_id.asc(), GrantAuditEntry.sequence.asc()
            )
        ).all()
        problems: List[str] = []
        for patient_id, chain in groupby(entries, key=lambda entry: entry.patient_id):
            problems.extend(
                verify_links(
                    (
                        f"{patient_id}[{entry.sequence}]",
                        hash_material(entry),
                        entry.prev_hash,
                        entry.curr_hash,
                    )
                    for entry in chain
                )
            )
        return {"ok": not problems, "entries": len(entries), "problems": problems}

    def _head(self, patient_id: str) -> tuple[int, Optional[str]]:
        # Row lock on the patient serializes appends to one chain; a no-op on SQLite.
        self.session.exec(
            select(Patient.id).where(Patient.id == patient_id).with_for_update()
        ).first()
        last_sequence = self.session.exec(
            select(func.max(GrantAuditEntry.sequence)).where(
                GrantAuditEntry.patient_id == patient_id
            )
        ).one()
        if last_sequence is None:
            return 0, None
        curr_hash = self.session.exec(
            select(GrantAuditEntry.curr_hash).where(
                GrantAuditEntry.patient_id == patient_id,
                GrantAuditEntry.sequence == last_sequence,
            )
        ).one()
        return last_sequence, curr_hash
