"""Share analytics: counts of active grants, snapshotted over time."""
from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func
from sqlmodel import Session, select

from ..domain.clock import as_utc_naive
from ..domain.models import AccessLevel, Grant, PatientGrant, ShareAnalyticsSnapshot
from .grants import active_grants_clause

EXPIRING_WINDOW_DAYS = 30


class ShareAnalyticsService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def snapshot(self, now: datetime) -> ShareAnalyticsSnapshot:
        now = as_utc_naive(now)
        rows = self.session.exec(
            select(PatientGrant).where(*active_grants_clause(now))
        ).all()
        grants = [Grant.model_validate(row) for row in rows]
        by_level = {level: 0 for level in AccessLevel}
        for grant in grants:
            by_level[grant.access_level] += 1

        snapshot = ShareAnalyticsSnapshot(
            total_active_shares=len(grants),
            read_shares=by_level[AccessLevel.READ],
            write_shares=by_level[AccessLevel.WRITE],
            admin_shares=by_level[AccessLevel.ADMIN],
            expiring_soon=sum(
                1 for grant in grants if grant.expires_within(now, days=EXPIRING_WINDOW_DAYS)
            ),
            calculated_at=now,
        )
        self.session.add(snapshot)
        self.session.flush()
        self.session.refresh(snapshot)
        return snapshot

    def latest(self) -> ShareAnalyticsSnapshot | None:
        stmt = (
            select(ShareAnalyticsSnapshot)
            .order_by(ShareAnalyticsSnapshot.calculated_at.desc())
            .limit(1)
        )
        return self.session.exec(stmt).first()

    def summary(self, now: datetime, days: int = 7) -> dict:
        cutoff = as_utc_naive(now) - timedelta(days=days)
        stmt = select(
            func.count(ShareAnalyticsSnapshot.id),
            func.avg(ShareAnalyticsSnapshot.total_active_shares),
            func.avg(ShareAnalyticsSnapshot.read_shares),
            func.avg(ShareAnalyticsSnapshot.write_shares),
            func.avg(ShareAnalyticsSnapshot.admin_shares),
            func.avg(ShareAnalyticsSnapshot.expiring_soon),
        ).where(ShareAnalyticsSnapshot.calculated_at >= cutoff)
        result = self.session.exec(stmt).first()
        return {
            "window_days": days,
            "snapshots": result[0] or 0,
            "averages": {
                "total_active_shares": float(result[1] or 0.0),
                "read_shares": float(result[2] or 0.0),
                "write_shares": float(result[3] or 0.0),
                "admin_shares": float(result[4] or 0.0),
                "expiring_soon": float(result[5] or 0.0),
            },
        }
