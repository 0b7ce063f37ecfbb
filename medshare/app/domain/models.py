"""Domain models shared between API and persistence layers."""
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import Column, Field as SQLField, SQLModel

from .clock import utcnow

EXPIRING_SOON_DAYS = 7


def _new_id() -> str:
    return str(uuid4())


class AccessLevel(str, Enum):
    """Ordered permission tier: read < write < admin."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def covers(self, required: "AccessLevel") -> bool:
        return self.rank >= required.rank


_LEVEL_RANK = {AccessLevel.READ: 1, AccessLevel.WRITE: 2, AccessLevel.ADMIN: 3}


class RevokeReason(str, Enum):
    REVOKED = "revoked"
    SUPERSEDED = "superseded"


class GrantAuditAction(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REVOKED = "revoked"
    EXPIRED = "expired"


class LabStatus(str, Enum):
    NORMAL = "normal"
    ABNORMAL = "abnormal"
    CRITICAL = "critical"


class UserAccount(SQLModel, table=True):
    __tablename__ = "users"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    email: str = SQLField(index=True, unique=True)
    created_at: datetime = SQLField(default_factory=utcnow, nullable=False)


class Patient(SQLModel, table=True):
    """A patient record; the creating user owns it."""

    __tablename__ = "patients"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    owner_user_id: str = SQLField(index=True)
    first_name: str
    last_name: str
    created_at: datetime = SQLField(default_factory=utcnow, nullable=False)


class PatientGrant(SQLModel, table=True):
    """One user granting another time-bounded access to one patient.

    Rows are never deleted. Revocation and supersession only stamp
    ``revoked_at`` so the sharing history stays queryable.
    """

    __tablename__ = "patient_grants"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    patient_id: str = SQLField(index=True)
    grantor_user_id: str = SQLField(index=True)
    grantee_user_id: str = SQLField(index=True)
    access_level: AccessLevel
    created_at: datetime = SQLField(default_factory=utcnow, nullable=False)
    updated_at: datetime = SQLField(default_factory=utcnow, nullable=False)
    expires_at: Optional[datetime] = SQLField(default=None, index=True)
    revoked_at: Optional[datetime] = SQLField(default=None, index=True)
    revoked_by: Optional[str] = SQLField(default=None)
    revoke_reason: Optional[RevokeReason] = SQLField(default=None)
    expiry_recorded_at: Optional[datetime] = SQLField(default=None)


class GrantSlot(SQLModel, table=True):
    """Keyed pointer to the current grant of a (patient, grantee) pair.

    Writers swap ``grant_id`` with a conditional update on ``version`` so
    two concurrent writers for the same pair cannot both win.
    """

    __tablename__ = "grant_slots"

    patient_id: str = SQLField(primary_key=True)
    grantee_user_id: str = SQLField(primary_key=True)
    grant_id: Optional[str] = SQLField(default=None)
    version: int = SQLField(default=1, nullable=False)


class Grant(BaseModel):
    """Detached, immutable snapshot of a ``PatientGrant`` row."""

    id: str
    patient_id: str
    grantor_user_id: str
    grantee_user_id: str
    access_level: AccessLevel
    created_at: datetime
    updated_at: datetime
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    def is_active(self, now: datetime) -> bool:
        if self.revoked_at is not None:
            return False
        return self.expires_at is None or self.expires_at > now

    def expires_within(self, now: datetime, days: int = EXPIRING_SOON_DAYS) -> bool:
        if self.expires_at is None:
            return False
        return now < self.expires_at <= now + timedelta(days=days)


class ListedGrant(Grant):
    is_expiring_soon: bool = False


class GrantAuditEntry(SQLModel, table=True):
    """Append-only record of grant changes, hash-chained per patient."""

    __tablename__ = "grant_audit_log"
    __table_args__ = (
        UniqueConstraint("patient_id", "sequence", name="uq_grant_audit_patient_sequence"),
    )

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    sequence: int = SQLField(index=True)
    grant_id: str = SQLField(index=True)
    patient_id: str = SQLField(index=True)
    action: GrantAuditAction
    previous_state: Dict[str, Any] = SQLField(
        sa_column=Column(JSON, nullable=False, server_default="{}")
    )
    new_state: Dict[str, Any] = SQLField(
        sa_column=Column(JSON, nullable=False, server_default="{}")
    )
    changed_by_user_id: Optional[str] = SQLField(default=None, index=True)
    prev_hash: Optional[str] = SQLField(default=None)
    curr_hash: Optional[str] = SQLField(default=None, index=True)
    created_at: datetime = SQLField(default_factory=utcnow, nullable=False, index=True)


class GrantAuditEntryRead(BaseModel):
    id: str
    sequence: int
    grant_id: str
    patient_id: str
    action: GrantAuditAction
    previous_state: Dict[str, Any]
    new_state: Dict[str, Any]
    changed_by_user_id: Optional[str]
    prev_hash: Optional[str]
    curr_hash: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ShareAnalyticsSnapshot(SQLModel, table=True):
    """Point-in-time counts of active shares."""

    __tablename__ = "share_analytics"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    total_active_shares: int = SQLField(default=0)
    read_shares: int = SQLField(default=0)
    write_shares: int = SQLField(default=0)
    admin_shares: int = SQLField(default=0)
    expiring_soon: int = SQLField(default=0)
    calculated_at: datetime = SQLField(default_factory=utcnow, nullable=False, index=True)


class ShareAnalyticsSnapshotRead(BaseModel):
    id: str
    total_active_shares: int
    read_shares: int
    write_shares: int
    admin_shares: int
    expiring_soon: int
    calculated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Clinical records. These belong to the CRUD layer; the core only reads them.


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    patient_id: str = SQLField(index=True)
    scheduled_at: datetime = SQLField(index=True)
    appointment_type: str = SQLField(default="consultation")
    doctor_name: Optional[str] = None
    location: Optional[str] = None
    status: str = SQLField(default="scheduled")
    notes: Optional[str] = None
    created_at: datetime = SQLField(default_factory=utcnow, nullable=False)


class Prescription(SQLModel, table=True):
    __tablename__ = "prescriptions"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    patient_id: str = SQLField(index=True)
    medication: str
    dosage: str
    frequency: str
    duration_days: int = SQLField(default=0)
    start_date: datetime = SQLField(index=True)
    end_date: Optional[datetime] = None
    instructions: Optional[str] = None
    status: str = SQLField(default="active")
    created_at: datetime = SQLField(default_factory=utcnow, nullable=False)


class VitalsReading(SQLModel, table=True):
    __tablename__ = "vitals"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    patient_id: str = SQLField(index=True)
    recorded_at: datetime = SQLField(index=True)
    blood_pressure: Optional[str] = None
    heart_rate: Optional[int] = None
    temperature: Optional[float] = None
    oxygen_level: Optional[int] = None
    created_at: datetime = SQLField(default_factory=utcnow, nullable=False)


class LabResult(SQLModel, table=True):
    __tablename__ = "lab_results"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    patient_id: str = SQLField(index=True)
    test_name: str
    test_type: str
    result_value: str
    unit: str
    reference_range: str = ""
    status: LabStatus = SQLField(default=LabStatus.NORMAL)
    date: datetime = SQLField(index=True)
    notes: Optional[str] = None
    created_at: datetime = SQLField(default_factory=utcnow, nullable=False)


class ClinicalNote(SQLModel, table=True):
    __tablename__ = "clinical_notes"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    patient_id: str = SQLField(index=True)
    author_user_id: str
    title: str
    body: str = ""
    noted_at: datetime = SQLField(index=True)
    created_at: datetime = SQLField(default_factory=utcnow, nullable=False)
