"""Normalized timeline events and aggregation options.

Every clinical record type projects into the same ``TimelineEvent`` shape.
The type-specific part lives in ``metadata``, a discriminated union keyed on
``type`` so each variant is handled explicitly.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, FrozenSet, List, Literal, Optional, Union, assert_never

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .models import LabStatus

DEFAULT_WINDOW_DAYS = 30
QUICK_FILTER_DAYS = (7, 30, 90)


class EventType(str, Enum):
    APPOINTMENT = "appointment"
    PRESCRIPTION = "prescription"
    VITALS = "vitals"
    LAB_RESULT = "lab_result"
    NOTE = "note"


class GroupMode(str, Enum):
    ALL = "all"
    BY_PATIENT = "by-patient"


class _Details(BaseModel):
    model_config = ConfigDict(frozen=True)


class AppointmentDetails(_Details):
    type: Literal["appointment"] = "appointment"
    appointment_type: str
    doctor_name: Optional[str] = None
    location: Optional[str] = None
    status: str


class PrescriptionDetails(_Details):
    type: Literal["prescription"] = "prescription"
    medication: str
    dosage: str
    frequency: str
    duration_days: int
    status: str


class VitalsDetails(_Details):
    type: Literal["vitals"] = "vitals"
    blood_pressure: Optional[str] = None
    heart_rate: Optional[int] = None
    temperature: Optional[float] = None
    oxygen_level: Optional[int] = None


class LabResultDetails(_Details):
    type: Literal["lab_result"] = "lab_result"
    test_name: str
    test_type: str
    result_value: str
    unit: str
    reference_range: str
    status: LabStatus


class NoteDetails(_Details):
    type: Literal["note"] = "note"
    author_user_id: str


EventMetadata = Annotated[
    Union[
        AppointmentDetails,
        PrescriptionDetails,
        VitalsDetails,
        LabResultDetails,
        NoteDetails,
    ],
    Field(discriminator="type"),
]


class TimelineEvent(BaseModel):
    id: str
    patient_id: str
    type: EventType
    date: datetime
    title: str
    description: Optional[str] = None
    metadata: EventMetadata
    created_at: datetime

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _metadata_matches_type(self) -> "TimelineEvent":
        if self.metadata.type != self.type.value:
            raise ValueError(
                f"metadata of type {self.metadata.type!r} on a {self.type.value!r} event"
            )
        return self


def metadata_terms(metadata: EventMetadata) -> List[str]:
    """Searchable string values of an event's metadata."""
    if isinstance(metadata, AppointmentDetails):
        values = [metadata.appointment_type, metadata.doctor_name, metadata.location, metadata.status]
    elif isinstance(metadata, PrescriptionDetails):
        values = [
            metadata.medication,
            metadata.dosage,
            metadata.frequency,
            metadata.duration_days,
            metadata.status,
        ]
    elif isinstance(metadata, VitalsDetails):
        values = [
            metadata.blood_pressure,
            metadata.heart_rate,
            metadata.temperature,
            metadata.oxygen_level,
        ]
    elif isinstance(metadata, LabResultDetails):
        values = [
            metadata.test_name,
            metadata.test_type,
            metadata.result_value,
            metadata.unit,
            metadata.reference_range,
            metadata.status.value,
        ]
    elif isinstance(metadata, NoteDetails):
        values = [metadata.author_user_id]
    else:
        assert_never(metadata)
    return [str(value) for value in values if value is not None]


@dataclass(frozen=True)
class DateRange:
    """Inclusive ``[start, end]`` window."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError("date range start is after its end")

    @classmethod
    def last_days(cls, days: int, now: datetime) -> "DateRange":
        if days <= 0:
            raise ValueError("days must be positive")
        return cls(start=now - timedelta(days=days), end=now)

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


@dataclass(frozen=True)
class TimelineOptions:
    types: Optional[FrozenSet[EventType]] = None
    search: Optional[str] = None
    date_range: Optional[DateRange] = None
    group_by: GroupMode = GroupMode.ALL


class TimelineGroup(BaseModel):
    key: str
    events: List[TimelineEvent]

    model_config = ConfigDict(frozen=True)


class Timeline(BaseModel):
    """Aggregated events in total order plus display groups over them."""

    group_by: GroupMode
    start: datetime
    end: datetime
    events: List[TimelineEvent]
    groups: List[TimelineGroup]

    model_config = ConfigDict(frozen=True)
