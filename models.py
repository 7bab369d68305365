# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Data models for the course schedule sync engine

One canonical ScheduleEntry shape is produced at the Internal Store boundary;
nothing past that boundary deals with raw rows or provider payloads.
"""
from dataclasses import dataclass, field, replace, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Provenance(Enum):
    """Where an entry originated"""
    INTERNAL = "internal"
    EXTERNAL = "external"
    HYBRID = "hybrid"


class EntryState(Enum):
    """Per-entry lifecycle inside the engine's local view"""
    ABSENT = "absent"
    PENDING_CREATE = "pending_create"
    CONFIRMED = "confirmed"
    PENDING_UPDATE = "pending_update"
    PENDING_DELETE = "pending_delete"


class SyncStatus(Enum):
    START = "start"
    SUCCESS = "success"
    ERROR = "error"


def slot_key(day_index: int, time_slot_index: int) -> str:
    """Key used by the interaction layer: "dayIndex-timeSlotIndex" """
    return f"{day_index}-{time_slot_index}"


def parse_slot_key(key: str) -> Tuple[int, int]:
    day, _, slot = key.partition('-')
    return int(day), int(slot)


@dataclass(frozen=True)
class ScheduleSlot:
    """Identifies a placement on the weekly grid"""
    tenant_id: str
    week_start: date
    day_index: int
    time_slot_index: int

    @property
    def key(self) -> str:
        return slot_key(self.day_index, self.time_slot_index)


@dataclass(frozen=True)
class CourseRef:
    """Denormalized course snapshot carried by an entry"""
    id: Optional[str] = None
    title: str = "Untitled Course"
    color: str = "bg-blue-500"
    duration: Optional[int] = None  # minutes

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'CourseRef':
        data = data or {}
        return cls(
            id=_str_or_none(data.get('id')),
            # Older callers send 'name' instead of 'title'
            title=data.get('title') or data.get('name') or "Untitled Course",
            color=data.get('color') or "bg-blue-500",
            duration=data.get('duration'),
        )


@dataclass(frozen=True)
class InstructorRef:
    """Denormalized instructor snapshot carried by an entry"""
    id: Optional[str] = None
    name: str = "TBD"
    email: Optional[str] = None
    color: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'InstructorRef':
        data = data or {}
        return cls(
            id=_str_or_none(data.get('id')),
            name=data.get('name') or data.get('full_name') or "TBD",
            email=data.get('email'),
            color=data.get('color'),
        )


@dataclass(frozen=True)
class ScheduleEntry:
    """A course session placed into a slot"""
    tenant_id: str
    week_start: date
    day_index: int
    time_slot_index: int
    course: CourseRef = field(default_factory=CourseRef)
    instructor: InstructorRef = field(default_factory=InstructorRef)
    room: str = "TBD"
    notes: Optional[str] = None
    duration: int = 1
    id: Optional[str] = None
    external_id: Optional[str] = None
    event_type_id: Optional[str] = None
    provenance: Provenance = Provenance.INTERNAL
    version: int = 0
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    state: EntryState = EntryState.CONFIRMED

    def __post_init__(self):
        if self.duration < 1:
            raise ValueError(f"duration must be >= 1, got {self.duration}")

    @property
    def pending(self) -> bool:
        return self.state in (
            EntryState.PENDING_CREATE,
            EntryState.PENDING_UPDATE,
            EntryState.PENDING_DELETE,
        )

    @property
    def key(self) -> str:
        return slot_key(self.day_index, self.time_slot_index)

    @property
    def slot(self) -> ScheduleSlot:
        return ScheduleSlot(self.tenant_id, self.week_start, self.day_index, self.time_slot_index)

    @property
    def last_slot_index(self) -> int:
        return self.time_slot_index + self.duration - 1

    def covers(self, day_index: int, time_slot_index: int) -> bool:
        return (day_index == self.day_index
                and self.time_slot_index <= time_slot_index <= self.last_slot_index)

    def overlaps(self, day_index: int, start_index: int, duration: int) -> bool:
        """True if [start_index, start_index + duration - 1] on day_index intersects this span"""
        if day_index != self.day_index:
            return False
        end_index = start_index + duration - 1
        return start_index <= self.last_slot_index and self.time_slot_index <= end_index

    def with_changes(self, **changes) -> 'ScheduleEntry':
        return replace(self, **changes)

    def same_assignment(self, other: 'ScheduleEntry') -> bool:
        """Course and instructor match (the fields reconciliation compares)"""
        return (_assignment_course(self) == _assignment_course(other)
                and _assignment_instructor(self) == _assignment_instructor(other))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'externalId': self.external_id,
            'tenantId': self.tenant_id,
            'weekStart': self.week_start.isoformat(),
            'dayIndex': self.day_index,
            'timeSlotIndex': self.time_slot_index,
            'slotKey': self.key,
            'course': asdict(self.course),
            'instructor': asdict(self.instructor),
            'room': self.room,
            'notes': self.notes,
            'duration': self.duration,
            'provenance': self.provenance.value,
            'state': self.state.value,
            'pending': self.pending,
            'version': self.version,
            'createdBy': self.created_by,
            'updatedBy': self.updated_by,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class EntryData:
    """User-supplied content of an entry, before placement"""
    course: CourseRef = field(default_factory=CourseRef)
    instructor: InstructorRef = field(default_factory=InstructorRef)
    room: str = "TBD"
    notes: Optional[str] = None
    duration: int = 1
    event_type_id: Optional[str] = None
    external_id: Optional[str] = None
    provenance: Provenance = Provenance.INTERNAL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EntryData':
        provenance = data.get('provenance') or Provenance.INTERNAL
        if not isinstance(provenance, Provenance):
            provenance = Provenance(provenance)
        return cls(
            course=data['course'] if isinstance(data.get('course'), CourseRef)
            else CourseRef.from_dict(data.get('course')),
            instructor=data['instructor'] if isinstance(data.get('instructor'), InstructorRef)
            else InstructorRef.from_dict(data.get('instructor')),
            room=data.get('room') or "TBD",
            notes=data.get('notes'),
            duration=int(data.get('duration') or 1),
            event_type_id=_str_or_none(data.get('event_type_id') or data.get('eventTypeId')),
            external_id=_str_or_none(data.get('external_id') or data.get('externalId')),
            provenance=provenance,
        )

    @classmethod
    def from_entry(cls, entry: ScheduleEntry) -> 'EntryData':
        return cls(
            course=entry.course,
            instructor=entry.instructor,
            room=entry.room,
            notes=entry.notes,
            duration=entry.duration,
            event_type_id=entry.event_type_id,
            external_id=entry.external_id,
            provenance=entry.provenance,
        )


@dataclass
class Course:
    id: Optional[str]
    tenant_id: str
    name: str
    color: str = "bg-blue-500"
    location: Optional[str] = None
    duration_minutes: int = 90
    description: Optional[str] = None


@dataclass
class Instructor:
    id: Optional[str]
    tenant_id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    color: Optional[str] = None
    specialization: Optional[str] = None


@dataclass(frozen=True)
class SyncLogRecord:
    """Append-only record of one synchronization step"""
    operation: str
    status: SyncStatus
    operation_id: str
    timestamp: datetime
    tenant_id: Optional[str] = None
    local_id: Optional[str] = None
    external_id: Optional[str] = None
    request: Optional[Dict[str, Any]] = None
    response: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'status': self.status.value,
            'operation_id': self.operation_id,
            'timestamp': self.timestamp.isoformat(),
            'tenant_id': self.tenant_id,
            'local_id': self.local_id,
            'external_id': self.external_id,
            'request': self.request,
            'response': self.response,
            'error': self.error,
            'duration_ms': self.duration_ms,
        }


def _assignment_course(entry: ScheduleEntry):
    return entry.course.id or entry.course.title


def _assignment_instructor(entry: ScheduleEntry):
    return entry.instructor.id or entry.instructor.name


def _str_or_none(value) -> Optional[str]:
    if value is None or value == '':
        return None
    return str(value)
