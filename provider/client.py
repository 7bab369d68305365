# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
External Provider Client - thin wrapper over the booking provider's REST API

Every method returns a ProviderResult and never raises across this boundary.
There is no retry here; the sync engine owns the retry policy.
"""
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import requests

import config
from errors import ProviderError
from utils.logger import StructuredLogger

logger = logging.getLogger(__name__)
structured_logger = StructuredLogger(__name__)


@dataclass(frozen=True)
class ProviderResult:
    """`{data, error}` pair; exactly one side is meaningful"""
    data: Any = None
    error: Optional[ProviderError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _iso(value) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _unwrap(data: Any, *keys: str) -> Any:
    """Provider responses nest payloads under varying keys ('booking', 'data', ...)"""
    if isinstance(data, dict):
        for key in keys:
            if key in data:
                return data[key]
    return data


class ProviderClient:
    """Bookings and event types over HTTP with Bearer authentication"""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[int] = None, attendee_timezone: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or config.PROVIDER_API_URL).rstrip('/')
        self.api_key = api_key if api_key is not None else config.PROVIDER_API_KEY
        self.timeout = timeout or config.PROVIDER_TIMEOUT
        self.attendee_timezone = attendee_timezone or config.PROVIDER_ATTENDEE_TIMEZONE
        self.session = session or requests.Session()

        if not self.api_key:
            logger.warning("⚠️ Provider API key not set - requests will be rejected")

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }

    def _request(self, method: str, endpoint: str, params: Optional[Dict] = None,
                 payload: Optional[Dict] = None) -> ProviderResult:
        url = f"{self.base_url}{endpoint}"
        started = time.monotonic()
        logger.debug(f"🔗 Provider request: {method} {url}")

        try:
            response = self.session.request(
                method, url, headers=self._headers(), params=params, json=payload,
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            return self._failure(method, endpoint, started, ProviderError(0, "Request timed out"))
        except requests.exceptions.RequestException as e:
            return self._failure(method, endpoint, started, ProviderError(0, f"Network error: {e}"))

        duration_ms = (time.monotonic() - started) * 1000

        if not 200 <= response.status_code < 300:
            try:
                message = response.json().get('message') or response.reason
            except (ValueError, AttributeError):
                message = response.reason or response.text[:200]
            error = ProviderError(response.status_code, f"Provider error ({response.status_code}): {message}")
            structured_logger.log_api_call(method, endpoint, response.status_code, duration_ms, error.message)
            return ProviderResult(error=error)

        if response.status_code == 204 or not response.content:
            data = {}
        else:
            try:
                data = response.json()
            except ValueError:
                return self._failure(method, endpoint, started, ProviderError(0, "Malformed response body"))

        structured_logger.log_api_call(method, endpoint, response.status_code, duration_ms)
        return ProviderResult(data=data)

    def _failure(self, method: str, endpoint: str, started: float, error: ProviderError) -> ProviderResult:
        duration_ms = (time.monotonic() - started) * 1000
        structured_logger.log_api_call(method, endpoint, None, duration_ms, error.message)
        return ProviderResult(error=error)

    @staticmethod
    def _extract_id(result: ProviderResult, *keys: str) -> ProviderResult:
        if not result.ok:
            return result
        body = _unwrap(result.data, *keys)
        if not isinstance(body, dict) or body.get('id') is None:
            return ProviderResult(error=ProviderError(0, "Response did not contain an id"))
        return ProviderResult(data=str(body['id']))

    @staticmethod
    def _extract_list(result: ProviderResult, *keys: str) -> ProviderResult:
        if not result.ok:
            return result
        items = _unwrap(result.data, *keys)
        if isinstance(items, dict):
            # v2-style envelopes nest once more
            items = _unwrap(items, *keys)
        if not isinstance(items, list):
            return ProviderResult(error=ProviderError(0, "Response did not contain a list"))
        return ProviderResult(data=items)

    # ==========================================
    # BOOKINGS
    # ==========================================

    def create_booking(self, event_type_id: str, start_time, end_time, attendee: Dict[str, Any],
                       metadata: Dict[str, Any], location: Optional[str] = None,
                       title: Optional[str] = None) -> ProviderResult:
        """Create a booking; data is the new booking id"""
        payload = {
            'eventTypeId': int(event_type_id) if str(event_type_id).isdigit() else event_type_id,
            'start': _iso(start_time),
            'end': _iso(end_time),
            'attendees': [{
                'name': attendee.get('name') or 'TBD',
                'email': attendee.get('email'),
                'timeZone': attendee.get('timeZone') or self.attendee_timezone,
            }],
            'metadata': metadata,
            'location': location or 'TBD',
        }
        if title:
            payload['title'] = title
        return self._extract_id(self._request('POST', '/bookings', payload=payload), 'booking', 'data')

    def update_booking(self, booking_id: str, patch: Dict[str, Any]) -> ProviderResult:
        payload = {key: _iso(value) if isinstance(value, datetime) else value
                   for key, value in patch.items()}
        result = self._request('PATCH', f'/bookings/{booking_id}', payload=payload)
        return result if not result.ok else ProviderResult(data=_unwrap(result.data, 'booking', 'data'))

    def delete_booking(self, booking_id: str, reason: str = 'Schedule changed') -> ProviderResult:
        return self._request('DELETE', f'/bookings/{booking_id}', payload={'reason': reason})

    def list_bookings(self, start_date, end_date) -> ProviderResult:
        """Bookings whose start falls inside [start_date, end_date)"""
        params = {'start': _iso(start_date), 'end': _iso(end_date)}
        return self._extract_list(self._request('GET', '/bookings', params=params), 'bookings', 'data')

    # ==========================================
    # EVENT TYPES
    # ==========================================

    def create_event_type(self, title: str, duration_minutes: int, location_info: Optional[str] = None,
                          metadata: Optional[Dict[str, Any]] = None, slug: Optional[str] = None,
                          description: Optional[str] = None) -> ProviderResult:
        """Create an event type (course template); data is the new event type id"""
        payload = {
            'title': title or 'Teaching Session',
            'slug': slug or 'teaching-session',
            'length': duration_minutes or 90,
            'description': description or 'Teaching session',
            'locations': [{'type': 'inPerson', 'address': location_info or 'TBD'}],
            'metadata': metadata or {},
        }
        result = self._request('POST', '/event-types', payload=payload)
        return self._extract_id(result, 'event_type', 'eventType', 'data')

    def list_event_types(self) -> ProviderResult:
        return self._extract_list(self._request('GET', '/event-types'), 'event_types', 'eventTypes', 'data')

    # ==========================================
    # ACCOUNT / AVAILABILITY
    # ==========================================

    def get_me(self) -> ProviderResult:
        """Connection probe"""
        result = self._request('GET', '/me')
        return result if not result.ok else ProviderResult(data=_unwrap(result.data, 'user', 'data'))

    def get_availability(self, event_type_id: str, day) -> ProviderResult:
        if isinstance(day, datetime):
            day = day.date()
        params = {'eventTypeId': event_type_id,
                  'date': day.isoformat() if isinstance(day, date) else str(day)}
        return self._request('GET', '/availability', params=params)
