import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from medshare.app.domain.errors import InvalidArgument, NotFound, PermissionDenied, SourceUnavailable
from medshare.app.domain.models import (
    AccessLevel,
    Appointment,
    ClinicalNote,
    LabResult,
    LabStatus,
    Prescription,
    VitalsReading,
)
from medshare.app.domain.timeline import DateRange, EventType, GroupMode, TimelineOptions
from medshare.app.services.adapters import EventSourceAdapter, NoteAdapter, default_adapters
from medshare.app.services.grants import GrantStore
from medshare.app.services.timeline import TimelineAggregator

NOW = datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture
def ward(clinic):
    alice = clinic.user("alice@example.com")
    bob = clinic.user("bob@example.com")
    carol = clinic.user("carol@example.com")
    p1 = clinic.patient(alice, last_name="One")
    p2 = clinic.patient(carol, last_name="Two")
    p3 = clinic.patient(alice, last_name="Three")
    clinic.add(
        Appointment(
            patient_id=p1,
            scheduled_at=NOW - timedelta(days=2),
            appointment_type="follow_up",
            doctor_name="Dr. House",
            location="Clinic B",
            status="completed",
        ),
        Prescription(
            patient_id=p1,
            medication="Amoxicillin",
            dosage="500mg",
            frequency="3x daily",
            duration_days=7,
            start_date=NOW - timedelta(days=3),
        ),
        LabResult(
            patient_id=p1,
            test_name="HbA1c",
            test_type="blood",
            result_value="6.1",
            unit="%",
            reference_range="4.0-5.6",
            status=LabStatus.ABNORMAL,
            date=NOW - timedelta(days=10),
        ),
        VitalsReading(
            patient_id=p1,
            recorded_at=NOW - timedelta(days=45),
            blood_pressure="120/80",
            heart_rate=64,
        ),
        ClinicalNote(
            patient_id=p1,
            author_user_id=alice,
            title="Follow-up plan",
            body="Recheck glucose in a month.",
            noted_at=NOW - timedelta(days=1),
        ),
        ClinicalNote(
            patient_id=p2,
            author_user_id=carol,
            title="Private note",
            noted_at=NOW - timedelta(days=1),
        ),
        ClinicalNote(
            patient_id=p3,
            author_user_id=alice,
            title="Intake",
            noted_at=NOW - timedelta(days=5),
        ),
    )
    return alice, bob, carol, p1, p2, p3


def _timeline(factory, patients, subject, now=NOW, **options):
    aggregator = TimelineAggregator(session_factory=factory)
    return asyncio.run(
        aggregator.get_timeline(patients, subject, TimelineOptions(**options), now=now)
    )


def test_multi_patient_request_omits_inaccessible_patients(factory, ward):
    alice, _, _, p1, p2, _ = ward

    timeline = _timeline(
        factory,
        [p1, p2],
        alice,
        types=frozenset({EventType.APPOINTMENT, EventType.NOTE}),
    )

    assert {event.patient_id for event in timeline.events} == {p1}
    assert [event.type for event in timeline.events] == [EventType.NOTE, EventType.APPOINTMENT]
    assert timeline.events[1].title == "Follow Up with Dr. House"


def test_single_patient_request_is_denied(factory, ward):
    alice, _, _, _, p2, _ = ward

    with pytest.raises(PermissionDenied):
        _timeline(factory, [p2], alice)


def test_unknown_patient(factory, ward):
    alice, _, _, p1, _, _ = ward

    with pytest.raises(NotFound):
        _timeline(factory, ["missing-patient"], alice)

    timeline = _timeline(factory, [p1, "missing-patient"], alice)
    assert {event.patient_id for event in timeline.events} == {p1}


def test_revocation_applies_to_the_next_request(factory, ward):
    alice, bob, _, p1, _, _ = ward
    store = GrantStore(factory)
    grant = asyncio.run(store.create_or_replace_grant(p1, alice, bob, AccessLevel.READ, now=NOW))

    assert _timeline(factory, [p1], bob).events

    asyncio.run(store.revoke(grant.id, alice, now=NOW))
    with pytest.raises(PermissionDenied):
        _timeline(factory, [p1], bob)


def test_expired_grant_is_denied(factory, ward):
    alice, bob, _, p1, _, _ = ward
    asyncio.run(
        GrantStore(factory).create_or_replace_grant(
            p1, alice, bob, AccessLevel.READ, NOW + timedelta(hours=1), now=NOW
        )
    )

    assert _timeline(factory, [p1], bob).events
    with pytest.raises(PermissionDenied):
        _timeline(factory, [p1], bob, now=NOW + timedelta(hours=2))


def test_default_window_is_thirty_days(factory, ward):
    alice, _, _, p1, _, _ = ward

    recent = _timeline(factory, [p1], alice)
    assert EventType.VITALS not in {event.type for event in recent.events}
    assert recent.start == NOW - timedelta(days=30)
    assert recent.end == NOW

    wide = _timeline(factory, [p1], alice, date_range=DateRange.last_days(90, NOW))
    vitals = [event for event in wide.events if event.type is EventType.VITALS]
    assert len(vitals) == 1
    assert vitals[0].description == "BP 120/80, HR 64"


def test_date_range_bounds_are_inclusive(factory, ward):
    alice, _, _, p1, _, _ = ward
    day = NOW - timedelta(days=2)

    timeline = _timeline(factory, [p1], alice, date_range=DateRange(start=day, end=day))

    assert [event.type for event in timeline.events] == [EventType.APPOINTMENT]


def test_search_covers_title_description_and_metadata(factory, ward):
    alice, _, _, p1, _, _ = ward

    def titles(needle):
        return [event.title for event in _timeline(factory, [p1], alice, search=needle).events]

    assert titles("AMOXI") == ["Amoxicillin 500mg"]
    assert titles("glucose") == ["Follow-up plan"]
    assert titles("clinic b") == ["Follow Up with Dr. House"]
    assert titles("4.0-5.6") == ["HbA1c: 6.1 %"]
    assert titles("  ") == [
        "Follow-up plan",
        "Follow Up with Dr. House",
        "Amoxicillin 500mg",
        "HbA1c: 6.1 %",
    ]
    assert titles("nothing like this") == []


def test_type_filter(factory, ward):
    alice, _, _, p1, _, _ = ward

    timeline = _timeline(factory, [p1], alice, types=frozenset({EventType.LAB_RESULT}))

    assert [event.type for event in timeline.events] == [EventType.LAB_RESULT]
    assert timeline.events[0].metadata.status == LabStatus.ABNORMAL

    with pytest.raises(InvalidArgument):
        _timeline(factory, [p1], alice, types=frozenset())


def test_equal_dates_order_by_id_and_repeat_identically(factory, clinic, ward):
    alice, _, _, _, _, p3 = ward
    same_time = NOW - timedelta(days=4)
    clinic.add(
        *(
            ClinicalNote(patient_id=p3, author_user_id=alice, title=f"Note {n}", noted_at=same_time)
            for n in range(4)
        )
    )

    first = _timeline(factory, [p3], alice)
    second = _timeline(factory, [p3], alice)

    tied = [event.id for event in first.events if event.date == same_time]
    assert len(tied) == 4
    assert tied == sorted(tied)
    assert first.model_dump_json() == second.model_dump_json()
    dates = [event.date for event in first.events]
    assert dates == sorted(dates, reverse=True)


def test_group_by_patient(factory, ward):
    alice, _, _, p1, _, p3 = ward

    timeline = _timeline(factory, [p3, p1], alice, group_by=GroupMode.BY_PATIENT)

    assert [group.key for group in timeline.groups] == [p1, p3]
    for group in timeline.groups:
        assert group.events == [event for event in timeline.events if event.patient_id == group.key]


def test_group_by_day(factory, ward):
    alice, _, _, p1, _, p3 = ward

    timeline = _timeline(factory, [p1, p3], alice)

    keys = [group.key for group in timeline.groups]
    assert keys == sorted(set(keys), reverse=True)
    assert [event for group in timeline.groups for event in group.events] == timeline.events
    assert keys[0] == (NOW - timedelta(days=1)).date().isoformat()


def test_no_patients_yields_an_empty_timeline(factory, ward):
    alice = ward[0]

    timeline = _timeline(factory, [], alice)

    assert timeline.events == []
    assert timeline.groups == []


class BrokenNoteAdapter(NoteAdapter):
    def read_records(self, session, patient_id, date_range):
        raise OperationalError("SELECT clinical_notes", {}, Exception("disk I/O error"))


def test_failing_source_fails_the_whole_request(factory, ward):
    alice, _, _, p1, _, p3 = ward
    adapters = default_adapters(factory)
    adapters[EventType.NOTE] = BrokenNoteAdapter(factory)
    aggregator = TimelineAggregator(adapters)

    with pytest.raises(SourceUnavailable):
        asyncio.run(aggregator.get_timeline([p1, p3], alice, now=NOW))


class StalledAdapter:
    event_type = EventType.NOTE

    def __init__(self):
        self.started = None
        self.cancelled = False

    async def fetch(self, patient_id, date_range, subject_id, *, now, omit_denied=False):
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class FailingAdapter:
    event_type = EventType.VITALS

    def __init__(self, after):
        self.after = after

    async def fetch(self, patient_id, date_range, subject_id, *, now, omit_denied=False):
        await self.after.wait()
        raise SourceUnavailable("vitals records unavailable")


def test_first_failure_cancels_outstanding_fetches():
    async def scenario():
        stalled = StalledAdapter()
        stalled.started = asyncio.Event()
        aggregator = TimelineAggregator(
            {EventType.NOTE: stalled, EventType.VITALS: FailingAdapter(stalled.started)}
        )
        with pytest.raises(SourceUnavailable):
            await aggregator.get_timeline(["p-1"], "u-1", now=NOW)
        return stalled.cancelled

    assert asyncio.run(scenario())


def test_cancelling_the_request_cancels_fetches():
    async def scenario():
        stalled = StalledAdapter()
        stalled.started = asyncio.Event()
        aggregator = TimelineAggregator({EventType.NOTE: stalled})
        task = asyncio.create_task(aggregator.get_timeline(["p-1"], "u-1", now=NOW))
        await stalled.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return stalled.cancelled

    assert asyncio.run(scenario())


def test_adapter_must_define_its_projection(factory):
    with pytest.raises(TypeError):
        EventSourceAdapter(factory)

    class Incomplete(EventSourceAdapter):
        event_type = EventType.NOTE

    with pytest.raises(TypeError):
        Incomplete(factory)

    assert set(default_adapters(factory)) == set(EventType)
