"""Clinical timeline endpoint."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from ..deps import request_now, session_factory
from ..domain.clock import as_utc_naive
from ..domain.errors import InvalidArgument
from ..domain.timeline import DateRange, EventType, GroupMode, Timeline, TimelineOptions
from ..infra.db import SessionFactory
from ..services.timeline import TimelineAggregator

router = APIRouter()


def _date_range(
    days: Optional[int],
    start: Optional[datetime],
    end: Optional[datetime],
    now: datetime,
) -> Optional[DateRange]:
    if start is not None or end is not None:
        try:
            return DateRange(
                start=as_utc_naive(start) if start else datetime.min,
                end=as_utc_naive(end) if end else now,
            )
        except ValueError as exc:
            raise InvalidArgument(str(exc)) from exc
    if days is not None:
        return DateRange.last_days(days, now)
    return None


@router.get("/", response_model=Timeline)
async def get_timeline(
    caller_id: str,
    patient_id: List[str] = Query(..., description="one or more patient ids"),
    event_type: Optional[List[EventType]] = Query(None, alias="type"),
    q: Optional[str] = Query(None, description="case-insensitive text search"),
    days: Optional[int] = Query(None, ge=1, le=366, description="quick filter: last N days"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    group: GroupMode = Query(GroupMode.ALL),
    factory: SessionFactory = Depends(session_factory),
    now: datetime = Depends(request_now),
):
    options = TimelineOptions(
        types=frozenset(event_type) if event_type else None,
        search=q,
        date_range=_date_range(days, start, end, now),
        group_by=group,
    )
    aggregator = TimelineAggregator(session_factory=factory)
    return await aggregator.get_timeline(patient_id, caller_id, options, now=now)
