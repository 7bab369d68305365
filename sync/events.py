# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Events, status and outcomes emitted by the sync engine
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Optional

from errors import ProviderError
from models import EntryData, ScheduleEntry

# Engine event kinds
OPTIMISTIC = "optimistic"
CONFIRMED = "confirmed"
ROLLED_BACK = "rolled_back"
REMOTE = "remote"
NOTICE = "notice"
PROVIDER_DEGRADED = "provider_degraded"
CONFLICT = "conflict"
LOADED = "loaded"

PENDING_SYNC_WARNING = "saved locally, external sync pending"


@dataclass(frozen=True)
class EngineEvent:
    """One state transition of the local view"""
    kind: str
    key: Optional[str] = None
    entry: Optional[ScheduleEntry] = None
    previous: Optional[ScheduleEntry] = None
    message: Optional[str] = None
    operation: Optional[str] = None


@dataclass(frozen=True)
class EngineStatus:
    total_entries: int
    last_sync_timestamp: Optional[datetime]
    provider_connected: bool
    week_start: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalEntries': self.total_entries,
            'lastSyncTimestamp': self.last_sync_timestamp.isoformat() if self.last_sync_timestamp else None,
            'providerConnected': self.provider_connected,
            'weekStart': self.week_start.isoformat() if self.week_start else None,
        }


@dataclass(frozen=True)
class PendingOperation:
    """An accepted command whose optimistic change is already in the local view"""
    operation: str
    key: str
    week_start: date
    user: Optional[str]
    current: Optional[ScheduleEntry] = None
    optimistic: Optional[ScheduleEntry] = None
    changes: Dict[str, Any] = field(default_factory=dict)
    data: Optional[EntryData] = None
    noop_message: Optional[str] = None


@dataclass
class OperationResult:
    """
    Outcome of a mutating operation that reached the Internal Store

    `warning` is set when only the external mirror failed, so callers can tell
    "saved locally, external sync pending" apart from a real failure.
    """
    operation: str
    entry: Optional[ScheduleEntry] = None
    message: str = ''
    warning: Optional[str] = None
    provider_error: Optional[ProviderError] = None
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'success': self.success,
            'operation': self.operation,
            'message': self.message,
            'entry': self.entry.to_dict() if self.entry else None,
        }
        if self.warning:
            result['warning'] = self.warning
        if self.provider_error is not None:
            result['providerError'] = {'status': self.provider_error.status,
                                       'message': self.provider_error.message}
        return result


@dataclass(frozen=True)
class Conflict:
    """A slot where the internal entry and its external booking disagree"""
    key: str
    entry_id: str
    booking_id: str
    local_course: str
    external_course: str
    local_instructor: str
    external_instructor: str
    detected_at: datetime = field(compare=False)

    @property
    def signature(self):
        return (self.entry_id, self.booking_id, self.external_course, self.external_instructor)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'slotKey': self.key,
            'entryId': self.entry_id,
            'bookingId': self.booking_id,
            'local': {'course': self.local_course, 'instructor': self.local_instructor},
            'external': {'course': self.external_course, 'instructor': self.external_instructor},
            'detectedAt': self.detected_at.isoformat(),
        }
