# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Error taxonomy for schedule synchronization

validation  - caller error, never retried, optimistic state rolled back
persistence - Internal Store unreachable or rejected the write, rolled back
provider    - External Provider unreachable or rejected, degraded and logged
state       - engine not ready or scope busy, caller must wait and retry
"""
from typing import Optional


class ScheduleError(Exception):
    """Base class for all schedule synchronization errors"""

    code = 'schedule_error'
    category = 'schedule'

    def __init__(self, message: str = '', **details):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self) -> dict:
        return {
            'error': self.code,
            'category': self.category,
            'message': self.message,
            **self.details
        }


# Validation

class ValidationError(ScheduleError):
    code = 'validation_error'
    category = 'validation'


class SlotOccupied(ValidationError):
    """The target slot already holds an entry (possibly still pending)"""
    code = 'slot_occupied'


class SlotConflict(ValidationError):
    """Another entry's span overlaps the requested span"""
    code = 'slot_conflict'


class InvalidPlacement(ValidationError):
    """Day, time slot or duration falls outside the weekly grid"""
    code = 'invalid_placement'


class EntryNotFound(ValidationError):
    code = 'entry_not_found'


# Persistence

class StoreUnavailable(ScheduleError):
    """Internal Store connectivity loss"""
    code = 'store_unavailable'
    category = 'persistence'


class PersistenceFailed(ScheduleError):
    """A durable write to the Internal Store failed; local state was rolled back"""
    code = 'persistence_failed'
    category = 'persistence'

    def __init__(self, message: str = '', cause: Optional[Exception] = None, **details):
        super().__init__(message, **details)
        self.cause = cause


# Provider

class ProviderError(ScheduleError):
    """External Provider failure; status 0 means network error or malformed response"""
    code = 'provider_error'
    category = 'provider'

    RETRYABLE_STATUSES = {0, 408, 429, 500, 502, 503, 504}

    def __init__(self, status: int = 0, message: str = ''):
        super().__init__(message or f'Provider error ({status})', status=status)
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status in self.RETRYABLE_STATUSES

    def __repr__(self):
        return f'ProviderError(status={self.status}, message={self.message!r})'


# State

class StateError(ScheduleError):
    code = 'state_error'
    category = 'state'


class NotInitialized(StateError):
    """Engine used before its startup sequence completed"""
    code = 'not_initialized'


class ReconcileInProgress(StateError):
    code = 'reconcile_in_progress'


class NotAuthenticated(StateError):
    """No user identity outside development mode"""
    code = 'not_authenticated'
