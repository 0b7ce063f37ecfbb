"""
MedShare: patient record sharing and clinical timeline aggregation.

Practitioners grant one another time-bounded, leveled access to patient
records. Every read of clinical data is gated by those grants, and the
timeline merges appointments, prescriptions, vitals, lab results and notes
of one or many patients into a single chronological view.
"""

__all__ = [
    "AccessLevel",
    "Action",
    "DateRange",
    "EventType",
    "GrantStore",
    "GroupMode",
    "TimelineAggregator",
    "TimelineEvent",
    "TimelineOptions",
    "evaluate",
]

from .app.domain.models import AccessLevel
from .app.domain.policy import Action, evaluate
from .app.domain.timeline import DateRange, EventType, GroupMode, TimelineEvent, TimelineOptions
from .app.services.grants import GrantStore
from .app.services.timeline import TimelineAggregator

__version__ = "0.1.0"
