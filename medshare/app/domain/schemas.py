"""API I/O schemas."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, model_validator

from .models import AccessLevel


class GrantCreateIn(BaseModel):
    patient_id: str
    grantee_user_id: Optional[str] = None
    grantee_email: Optional[str] = None
    access_level: AccessLevel
    expires_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _one_grantee(self) -> "GrantCreateIn":
        if bool(self.grantee_user_id) == bool(self.grantee_email):
            raise ValueError("give exactly one of grantee_user_id or grantee_email")
        return self


class GrantLevelIn(BaseModel):
    access_level: AccessLevel


class ChainVerificationOut(BaseModel):
    ok: bool
    entries: int
    problems: List[str]


class AnalyticsAverages(BaseModel):
    total_active_shares: float
    read_shares: float
    write_shares: float
    admin_shares: float
    expiring_soon: float


class AnalyticsSummaryOut(BaseModel):
    window_days: int
    snapshots: int
    averages: AnalyticsAverages
