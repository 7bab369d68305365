# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
In-memory provider with deterministic responses, used when external mirroring
is disabled and in development mode
"""
import logging
from copy import deepcopy
from datetime import datetime
from threading import Lock
from typing import Any, Dict, Optional

from errors import ProviderError
from provider.client import ProviderResult, _iso
from utils.timezone import parse_iso

logger = logging.getLogger(__name__)


class NullProviderClient:
    """
    Same contract as ProviderClient, backed by dictionaries

    `fail_with` maps a method name to a ProviderError returned by the next calls
    to that method, which lets callers rehearse degraded-provider behaviour.
    """

    def __init__(self, attendee_timezone: str = 'UTC'):
        self.attendee_timezone = attendee_timezone
        self.bookings: Dict[str, Dict[str, Any]] = {}
        self.event_types: Dict[str, Dict[str, Any]] = {}
        self.fail_with: Dict[str, ProviderError] = {}
        self.calls = []
        self._next_booking = 0
        self._next_event_type = 0
        self._lock = Lock()

    def _enter(self, method: str) -> Optional[ProviderResult]:
        self.calls.append(method)
        error = self.fail_with.get(method)
        if error is not None:
            logger.debug(f"Null provider failing {method}: {error.message}")
            return ProviderResult(error=error)
        return None

    # Bookings

    def create_booking(self, event_type_id: str, start_time, end_time, attendee: Dict[str, Any],
                       metadata: Dict[str, Any], location: Optional[str] = None,
                       title: Optional[str] = None) -> ProviderResult:
        failed = self._enter('create_booking')
        if failed:
            return failed
        with self._lock:
            self._next_booking += 1
            booking_id = str(1000 + self._next_booking)
            self.bookings[booking_id] = {
                'id': int(booking_id),
                'uid': f'null-{booking_id}',
                'eventTypeId': event_type_id,
                'title': title,
                'startTime': _iso(start_time),
                'endTime': _iso(end_time),
                'attendees': [{**attendee, 'timeZone': attendee.get('timeZone') or self.attendee_timezone}],
                'metadata': dict(metadata),
                'location': location or 'TBD',
                'status': 'ACCEPTED',
            }
        return ProviderResult(data=booking_id)

    def update_booking(self, booking_id: str, patch: Dict[str, Any]) -> ProviderResult:
        failed = self._enter('update_booking')
        if failed:
            return failed
        with self._lock:
            booking = self.bookings.get(str(booking_id))
            if booking is None:
                return ProviderResult(error=ProviderError(404, f"Booking {booking_id} not found"))
            for key, value in patch.items():
                if key == 'start':
                    booking['startTime'] = _iso(value)
                elif key == 'end':
                    booking['endTime'] = _iso(value)
                elif key == 'metadata':
                    booking['metadata'] = {**booking.get('metadata', {}), **value}
                else:
                    booking[key] = value
            return ProviderResult(data=deepcopy(booking))

    def delete_booking(self, booking_id: str, reason: str = 'Schedule changed') -> ProviderResult:
        failed = self._enter('delete_booking')
        if failed:
            return failed
        with self._lock:
            if self.bookings.pop(str(booking_id), None) is None:
                return ProviderResult(error=ProviderError(404, f"Booking {booking_id} not found"))
        return ProviderResult(data={})

    def list_bookings(self, start_date, end_date) -> ProviderResult:
        failed = self._enter('list_bookings')
        if failed:
            return failed
        start = start_date if isinstance(start_date, datetime) else parse_iso(str(start_date))
        end = end_date if isinstance(end_date, datetime) else parse_iso(str(end_date))
        with self._lock:
            found = []
            for booking in self.bookings.values():
                begins = parse_iso(booking['startTime'])
                if begins is not None and start <= begins < end:
                    found.append(deepcopy(booking))
        found.sort(key=lambda b: b['startTime'])
        return ProviderResult(data=found)

    # Event types

    def create_event_type(self, title: str, duration_minutes: int, location_info: Optional[str] = None,
                          metadata: Optional[Dict[str, Any]] = None, slug: Optional[str] = None,
                          description: Optional[str] = None) -> ProviderResult:
        failed = self._enter('create_event_type')
        if failed:
            return failed
        with self._lock:
            self._next_event_type += 1
            event_type_id = str(self._next_event_type)
            self.event_types[event_type_id] = {
                'id': int(event_type_id),
                'title': title,
                'slug': slug or f'event-type-{event_type_id}',
                'length': duration_minutes,
                'locations': [{'type': 'inPerson', 'address': location_info or 'TBD'}],
                'metadata': dict(metadata or {}),
            }
        return ProviderResult(data=event_type_id)

    def list_event_types(self) -> ProviderResult:
        failed = self._enter('list_event_types')
        if failed:
            return failed
        with self._lock:
            return ProviderResult(data=[deepcopy(t) for t in self.event_types.values()])

    # Account

    def get_me(self) -> ProviderResult:
        failed = self._enter('get_me')
        if failed:
            return failed
        return ProviderResult(data={'id': 0, 'username': 'null-provider', 'timeZone': self.attendee_timezone})

    def get_availability(self, event_type_id: str, day) -> ProviderResult:
        failed = self._enter('get_availability')
        if failed:
            return failed
        return ProviderResult(data={'busy': [], 'eventTypeId': event_type_id, 'date': str(day)})
