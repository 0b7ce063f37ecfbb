"""Grant audit routes."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from ..deps import db_session
from ..domain.models import GrantAuditAction, GrantAuditEntryRead
from ..domain.schemas import ChainVerificationOut
from ..services.ledger import GrantAuditLedger

router = APIRouter()


@router.get("/grants", response_model=List[GrantAuditEntryRead])
def grant_audit_log(
    grant_id: Optional[str] = Query(None),
    patient_id: Optional[str] = Query(None),
    action: Optional[GrantAuditAction] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    session: Session = Depends(db_session),
) -> List[GrantAuditEntryRead]:
    entries = GrantAuditLedger(session).list(
        grant_id=grant_id,
        patient_id=patient_id,
        action=action,
        limit=limit,
    )
    return [GrantAuditEntryRead.model_validate(entry) for entry in entries]


@router.get("/grants/verify", response_model=ChainVerificationOut)
def verify_grant_audit_chain(session: Session = Depends(db_session)):
    return GrantAuditLedger(session).verify()
