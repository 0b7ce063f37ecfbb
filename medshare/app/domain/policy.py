"""Access policy: a pure decision over ownership and one grant snapshot."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .models import AccessLevel, Grant


class Action(str, Enum):
    VIEW_APPOINTMENTS = "view_appointments"
    VIEW_PRESCRIPTIONS = "view_prescriptions"
    VIEW_VITALS = "view_vitals"
    VIEW_LAB_RESULTS = "view_lab_results"
    VIEW_NOTES = "view_notes"
    VIEW_TIMELINE = "view_timeline"
    VIEW_SHARES = "view_shares"
    EDIT_RECORD = "edit_record"
    MANAGE_SHARES = "manage_shares"

    @property
    def required_level(self) -> AccessLevel:
        return _REQUIRED_LEVEL.get(self, AccessLevel.READ)


_REQUIRED_LEVEL = {
    Action.EDIT_RECORD: AccessLevel.WRITE,
    Action.MANAGE_SHARES: AccessLevel.ADMIN,
}


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    level: Optional[AccessLevel] = None


DENIED = AccessDecision(granted=False)


def evaluate(
    subject_id: str,
    action: Action,
    *,
    owner_id: Optional[str],
    grant: Optional[Grant],
    now: datetime,
) -> AccessDecision:
    """Decide whether ``subject_id`` may perform ``action`` on a patient.

    ``owner_id`` is the patient's owning user and ``grant`` the current grant
    for (patient, subject), if any. Expiry is judged against ``now`` only, so
    a grant past ``expires_at`` denies even if nobody revoked it.
    """
    if owner_id is not None and subject_id == owner_id:
        return AccessDecision(granted=True, level=AccessLevel.ADMIN)
    if grant is None or grant.grantee_user_id != subject_id:
        return DENIED
    if not grant.is_active(now):
        return DENIED
    if grant.access_level.covers(action.required_level):
        return AccessDecision(granted=True, level=grant.access_level)
    return DENIED
