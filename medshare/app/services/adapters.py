"""Event source adapters: one per clinical record type.

An adapter checks access for the requesting user, reads its own record type
for one patient and date range, and projects each record into a
``TimelineEvent``. It performs no cross-type logic.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from datetime import datetime
import logging
from typing import ClassVar, Dict, Generic, List, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from ..domain.clock import as_utc_naive
from ..domain.errors import NotFound, SourceUnavailable
from ..domain.models import Appointment, ClinicalNote, LabResult, Prescription, VitalsReading
from ..domain.policy import Action
from ..domain.timeline import (
    AppointmentDetails,
    DateRange,
    EventType,
    LabResultDetails,
    NoteDetails,
    PrescriptionDetails,
    TimelineEvent,
    VitalsDetails,
)
from ..infra.db import SessionFactory, get_session
from .abac import AccessEvaluator

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=SQLModel)


class EventSourceAdapter(ABC, Generic[R]):
    event_type: ClassVar[EventType]
    action: ClassVar[Action]
    record_model: ClassVar[Type[SQLModel]]
    date_field: ClassVar[str]

    def __init__(self, session_factory: SessionFactory = get_session) -> None:
        self.session_factory = session_factory

    async def fetch(
        self,
        patient_id: str,
        date_range: DateRange,
        subject_id: str,
        *,
        now: datetime,
        omit_denied: bool = False,
    ) -> List[TimelineEvent]:
        """Events of this adapter's type for one patient.

        With ``omit_denied`` an inaccessible or unknown patient yields an empty
        list; otherwise ``PermissionDenied`` / ``NotFound`` propagate.
        """
        return await asyncio.to_thread(
            self._fetch, patient_id, date_range, subject_id, now, omit_denied
        )

    def _fetch(
        self,
        patient_id: str,
        date_range: DateRange,
        subject_id: str,
        now: datetime,
        omit_denied: bool,
    ) -> List[TimelineEvent]:
        now = as_utc_naive(now)
        try:
            with self.session_factory() as session:
                evaluator = AccessEvaluator(session)
                try:
                    if omit_denied:
                        if not evaluator.decide(subject_id, patient_id, self.action, now).granted:
                            return []
                    else:
                        evaluator.enforce(subject_id, patient_id, self.action, now)
                except NotFound:
                    if omit_denied:
                        return []
                    raise
                records = self.read_records(session, patient_id, date_range)
                return [self.to_event(record) for record in records]
        except SQLAlchemyError as exc:
            logger.exception("%s source failed for patient %s", self.event_type.value, patient_id)
            raise SourceUnavailable(f"{self.event_type.value} records unavailable") from exc

    def read_records(self, session: Session, patient_id: str, date_range: DateRange) -> List[R]:
        column = getattr(self.record_model, self.date_field)
        stmt = select(self.record_model).where(
            self.record_model.patient_id == patient_id,
            column >= as_utc_naive(date_range.start),
            column <= as_utc_naive(date_range.end),
        )
        return list(session.exec(stmt).all())

    @abstractmethod
    def to_event(self, record: R) -> TimelineEvent:
        """Project one record of this type into a timeline event."""

    def event_id(self, record: R) -> str:
        return f"{self.event_type.value}:{record.id}"


class AppointmentAdapter(EventSourceAdapter[Appointment]):
    event_type = EventType.APPOINTMENT
    action = Action.VIEW_APPOINTMENTS
    record_model = Appointment
    date_field = "scheduled_at"

    def to_event(self, record: Appointment) -> TimelineEvent:
        title = record.appointment_type.replace("_", " ").title()
        if record.doctor_name:
            title = f"{title} with {record.doctor_name}"
        return TimelineEvent(
            id=self.event_id(record),
            patient_id=record.patient_id,
            type=self.event_type,
            date=record.scheduled_at,
            title=title,
            description=record.notes,
            metadata=AppointmentDetails(
                appointment_type=record.appointment_type,
                doctor_name=record.doctor_name,
                location=record.location,
                status=record.status,
            ),
            created_at=record.created_at,
        )


class PrescriptionAdapter(EventSourceAdapter[Prescription]):
    event_type = EventType.PRESCRIPTION
    action = Action.VIEW_PRESCRIPTIONS
    record_model = Prescription
    date_field = "start_date"

    def to_event(self, record: Prescription) -> TimelineEvent:
        return TimelineEvent(
            id=self.event_id(record),
            patient_id=record.patient_id,
            type=self.event_type,
            date=record.start_date,
            title=f"{record.medication} {record.dosage}",
            description=record.instructions,
            metadata=PrescriptionDetails(
                medication=record.medication,
                dosage=record.dosage,
                frequency=record.frequency,
                duration_days=record.duration_days,
                status=record.status,
            ),
            created_at=record.created_at,
        )


class VitalsAdapter(EventSourceAdapter[VitalsReading]):
    event_type = EventType.VITALS
    action = Action.VIEW_VITALS
    record_model = VitalsReading
    date_field = "recorded_at"

    def to_event(self, record: VitalsReading) -> TimelineEvent:
        readings = []
        if record.blood_pressure:
            readings.append(f"BP {record.blood_pressure}")
        if record.heart_rate is not None:
            readings.append(f"HR {record.heart_rate}")
        if record.temperature is not None:
            readings.append(f"Temp {record.temperature}")
        if record.oxygen_level is not None:
            readings.append(f"SpO2 {record.oxygen_level}%")
        return TimelineEvent(
            id=self.event_id(record),
            patient_id=record.patient_id,
            type=self.event_type,
            date=record.recorded_at,
            title="Vitals recorded",
            description=", ".join(readings) or None,
            metadata=VitalsDetails(
                blood_pressure=record.blood_pressure,
                heart_rate=record.heart_rate,
                temperature=record.temperature,
                oxygen_level=record.oxygen_level,
            ),
            created_at=record.created_at,
        )


class LabResultAdapter(EventSourceAdapter[LabResult]):
    event_type = EventType.LAB_RESULT
    action = Action.VIEW_LAB_RESULTS
    record_model = LabResult
    date_field = "date"

    def to_event(self, record: LabResult) -> TimelineEvent:
        return TimelineEvent(
            id=self.event_id(record),
            patient_id=record.patient_id,
            type=self.event_type,
            date=record.date,
            title=f"{record.test_name}: {record.result_value} {record.unit}".strip(),
            description=record.notes,
            metadata=LabResultDetails(
                test_name=record.test_name,
                test_type=record.test_type,
                result_value=record.result_value,
                unit=record.unit,
                reference_range=record.reference_range,
                status=record.status,
            ),
            created_at=record.created_at,
        )


class NoteAdapter(EventSourceAdapter[ClinicalNote]):
    event_type = EventType.NOTE
    action = Action.VIEW_NOTES
    record_model = ClinicalNote
    date_field = "noted_at"

    def to_event(self, record: ClinicalNote) -> TimelineEvent:
        return TimelineEvent(
            id=self.event_id(record),
            patient_id=record.patient_id,
            type=self.event_type,
            date=record.noted_at,
            title=record.title,
            description=record.body or None,
            metadata=NoteDetails(author_user_id=record.author_user_id),
            created_at=record.created_at,
        )


def default_adapters(session_factory: SessionFactory = get_session) -> Dict[EventType, EventSourceAdapter]:
    adapters = (
        AppointmentAdapter(session_factory),
        PrescriptionAdapter(session_factory),
        VitalsAdapter(session_factory),
        LabResultAdapter(session_factory),
        NoteAdapter(session_factory),
    )
    return {adapter.event_type: adapter for adapter in adapters}
