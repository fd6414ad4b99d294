"""Data models for schedule materialization."""
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Union

SCHEMA_VERSION = '3.0'

VIS_PERSONAL = 'personal'
VIS_ALL = 'all'
VIS_STAFF_ONLY = 'staffOnly'


@dataclass(frozen=True)
class SheetDescriptor:
    """A dated whiteboard sheet that exists in the spreadsheet."""
    sheet_name: str
    date: date
    offset_days: int


@dataclass(frozen=True)
class Person:
    """A roster entry."""
    name: str
    category: str
    role_type: str


@dataclass(frozen=True)
class SupervisionDetails:
    section = 'Supervision'
    duty: str
    poc: str
    start: Optional[str]
    end: Optional[str]
    is_auth: bool

    def to_dict(self) -> dict:
        return {
            'section': self.section,
            'duty': self.duty,
            'poc': self.poc,
            'start': self.start,
            'end': self.end,
            'isAuth': self.is_auth
        }


@dataclass(frozen=True)
class FlightStatus:
    effective: bool
    cancelled: bool
    partially_effective: bool

    def to_dict(self) -> dict:
        return {
            'effective': self.effective,
            'cancelled': self.cancelled,
            'partiallyEffective': self.partially_effective
        }


@dataclass(frozen=True)
class FlyingDetails:
    section = 'FlyingEvents'
    model: str
    brief_start: str
    etd: str
    eta: str
    debrief_end: str
    event: str
    crew: List[str]
    notes: str
    status: FlightStatus

    def to_dict(self) -> dict:
        return {
            'section': self.section,
            'model': self.model,
            'briefStart': self.brief_start,
            'etd': self.etd,
            'eta': self.eta,
            'debriefEnd': self.debrief_end,
            'event': self.event,
            'crew': list(self.crew),
            'notes': self.notes,
            'status': self.status.to_dict()
        }


@dataclass(frozen=True)
class GroundDetails:
    section = 'GroundEvents'
    event: str
    start: str
    end: str
    people: List[str]
    effective: bool
    cancelled: bool
    partially_effective: bool

    def to_dict(self) -> dict:
        return {
            'section': self.section,
            'event': self.event,
            'start': self.start,
            'end': self.end,
            'people': list(self.people),
            'status': {
                'effective': self.effective,
                'cancelled': self.cancelled,
                'partiallyEffective': self.partially_effective
            }
        }


@dataclass(frozen=True)
class NotAvailableDetails:
    section = 'NotAvailable'
    reason: str
    start: str
    end: str
    people: List[str]

    def to_dict(self) -> dict:
        return {
            'section': self.section,
            'reason': self.reason,
            'start': self.start,
            'end': self.end,
            'people': list(self.people)
        }


@dataclass(frozen=True)
class AcademicsDetails:
    section = 'Academics'
    category: str
    start: str
    end: str

    def to_dict(self) -> dict:
        return {
            'section': self.section,
            'category': self.category,
            'start': self.start,
            'end': self.end
        }


EventDetails = Union[
    SupervisionDetails,
    FlyingDetails,
    GroundDetails,
    NotAvailableDetails,
    AcademicsDetails,
]


@dataclass(frozen=True)
class EventRecord:
    """One schedule entry for one day; `section` comes from its details."""
    date: str
    time: str
    description: str
    details: EventDetails
    visibility: str = VIS_PERSONAL
    personal_match: bool = True

    @property
    def section(self) -> str:
        return self.details.section

    def to_dict(self) -> dict:
        return {
            'date': self.date,
            'time': self.time,
            'section': self.section,
            'description': self.description,
            'details': self.details.to_dict(),
            'visibility': self.visibility,
            'personalMatch': self.personal_match
        }


@dataclass
class PersonSchedule:
    """Cached, materialized schedule for one person."""
    person: str
    category: str
    role_type: str
    events: List[EventRecord]
    days: List[str]
    window_dates: List[str]
    last_updated: str
    schema_version: str = SCHEMA_VERSION

    def to_dict(self) -> dict:
        return {
            'person': self.person,
            'category': self.category,
            'roleType': self.role_type,
            'events': [event.to_dict() for event in self.events],
            'days': list(self.days),
            'windowDates': list(self.window_dates),
            'lastUpdated': self.last_updated,
            'schemaVersion': self.schema_version
        }


@dataclass
class BatchRunMetadata:
    """Summary of one materialization run."""
    last_run: str
    duration_seconds: float
    sheets_processed: int
    people_processed: int
    events_found: int
    cache_size_bytes: int
    error_count: int
    status: str = 'success'
    window_dates: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'lastRun': self.last_run,
            'durationSeconds': self.duration_seconds,
            'sheetsProcessed': self.sheets_processed,
            'peopleProcessed': self.people_processed,
            'eventsFound': self.events_found,
            'cacheSizeBytes': self.cache_size_bytes,
            'errorCount': self.error_count,
            'status': self.status,
            'windowDates': list(self.window_dates),
            'errors': list(self.errors)
        }


@dataclass
class BatchRunResult:
    """Outcome of a run request: success, skipped, locked or no_data."""
    status: str
    metadata: Optional[BatchRunMetadata] = None
    reason: str = ''

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'reason': self.reason,
            'metadata': self.metadata.to_dict() if self.metadata else None
        }


@dataclass
class WriteResult:
    """Result of a bulk cache write."""
    written: List[str]
    errors: List[str]
    size_bytes: int
