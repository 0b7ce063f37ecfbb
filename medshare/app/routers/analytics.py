"""Share analytics endpoints."""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session

from ..deps import db_session, request_now
from ..domain.models import ShareAnalyticsSnapshotRead
from ..domain.schemas import AnalyticsSummaryOut
from ..services.telemetry import ShareAnalyticsService

router = APIRouter()


@router.get("/shares", response_model=ShareAnalyticsSnapshotRead)
def latest_share_analytics(session: Session = Depends(db_session)):
    snapshot = ShareAnalyticsService(session).latest()
    if not snapshot:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Snapshot not found")
    return ShareAnalyticsSnapshotRead.model_validate(snapshot)


@router.post(
    "/shares",
    response_model=ShareAnalyticsSnapshotRead,
    status_code=status.HTTP_201_CREATED,
)
def recalc_share_analytics(
    session: Session = Depends(db_session),
    now: datetime = Depends(request_now),
):
    snapshot = ShareAnalyticsService(session).snapshot(now)
    return ShareAnalyticsSnapshotRead.model_validate(snapshot)


@router.get("/shares/summary", response_model=AnalyticsSummaryOut)
def share_analytics_summary(
    days: int = Query(7, ge=1, le=90),
    session: Session = Depends(db_session),
    now: datetime = Depends(request_now),
):
    """Averaged share counts over the past N days."""
    return ShareAnalyticsService(session).summary(now, days=days)
