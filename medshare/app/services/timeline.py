"""Timeline aggregation across record types and patients."""
from __future__ import annotations

import asyncio
from datetime import datetime
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..domain.clock import as_utc_naive
from ..domain.errors import InvalidArgument
from ..domain.timeline import (
    DEFAULT_WINDOW_DAYS,
    DateRange,
    EventType,
    GroupMode,
    Timeline,
    TimelineEvent,
    TimelineGroup,
    TimelineOptions,
    metadata_terms,
)
from ..infra.db import SessionFactory, get_session
from .adapters import EventSourceAdapter, default_adapters

logger = logging.getLogger(__name__)


def matches(event: TimelineEvent, needle: str) -> bool:
    """Case-insensitive substring match over title, description and metadata."""
    fields = [event.title, event.description or "", *metadata_terms(event.metadata)]
    return any(needle in value.lower() for value in fields)


def order_events(events: Iterable[TimelineEvent]) -> List[TimelineEvent]:
    """Newest first; equal dates fall back to ascending id."""
    ordered = sorted(events, key=lambda event: event.id)
    ordered.sort(key=lambda event: event.date, reverse=True)
    return ordered


def group_events(events: Sequence[TimelineEvent], mode: GroupMode) -> List[TimelineGroup]:
    buckets: Dict[str, List[TimelineEvent]] = {}
    for event in events:
        if mode is GroupMode.BY_PATIENT:
            key = event.patient_id
        else:
            key = event.date.date().isoformat()
        buckets.setdefault(key, []).append(event)
    return [TimelineGroup(key=key, events=members) for key, members in buckets.items()]


class TimelineAggregator:
    def __init__(
        self,
        adapters: Optional[Mapping[EventType, EventSourceAdapter]] = None,
        session_factory: SessionFactory = get_session,
    ) -> None:
        self.adapters = dict(adapters) if adapters is not None else default_adapters(session_factory)

    async def get_timeline(
        self,
        patient_ids: Iterable[str],
        subject_id: str,
        options: Optional[TimelineOptions] = None,
        *,
        now: datetime,
    ) -> Timeline:
        """Merged, filtered and ordered events for the given patients.

        A single-patient request the subject cannot read raises
        ``PermissionDenied``; in a multi-patient request such patients are
        left out silently. Any adapter failure fails the whole request.
        """
        options = options or TimelineOptions()
        now = as_utc_naive(now)
        patients = sorted(set(patient_ids))
        types = self._selected_types(options)
        date_range = options.date_range or DateRange.last_days(DEFAULT_WINDOW_DAYS, now)
        omit_denied = len(patients) > 1

        jobs = [(patient_id, event_type) for patient_id in patients for event_type in types]
        batches = await self._fan_out(jobs, date_range, subject_id, now, omit_denied)
        events = [event for batch in batches for event in batch]

        needle = (options.search or "").strip().lower()
        if needle:
            events = [event for event in events if matches(event, needle)]
        events = order_events(events)

        logger.debug(
            "timeline for %s: %s patients, %s types, %s events",
            subject_id,
            len(patients),
            len(types),
            len(events),
        )
        return Timeline(
            group_by=options.group_by,
            start=date_range.start,
            end=date_range.end,
            events=events,
            groups=group_events(events, options.group_by),
        )

    def _selected_types(self, options: TimelineOptions) -> List[EventType]:
        if options.types is None:
            return [event_type for event_type in EventType if event_type in self.adapters]
        if not options.types:
            raise InvalidArgument("at least one event type must be selected")
        unknown = [event_type for event_type in options.types if event_type not in self.adapters]
        if unknown:
            raise InvalidArgument(f"no source for event types {sorted(t.value for t in unknown)}")
        return [event_type for event_type in EventType if event_type in options.types]

    async def _fan_out(
        self,
        jobs: List[Tuple[str, EventType]],
        date_range: DateRange,
        subject_id: str,
        now: datetime,
        omit_denied: bool,
    ) -> List[List[TimelineEvent]]:
        """Run every fetch concurrently; stop at the first failure.

        Results come back in job order, whatever order the fetches finish in.
        Cancelling the caller cancels every fetch still in flight.
        """
        if not jobs:
            return []
        tasks = [
            asyncio.create_task(
                self.adapters[event_type].fetch(
                    patient_id,
                    date_range,
                    subject_id,
                    now=now,
                    omit_denied=omit_denied,
                )
            )
            for patient_id, event_type in jobs
        ]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
        return [task.result() for task in tasks]
