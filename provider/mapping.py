# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Booking <-> schedule entry mapping

Bookings carry everything needed to rebuild an entry in their free-form
metadata, so an import never has to consult another system. Metadata values
are strings because providers commonly reject nested or numeric values there.
"""
from datetime import date
from typing import Any, Dict, Optional, Tuple

from models import CourseRef, EntryData, InstructorRef, Provenance, ScheduleEntry
from utils.timezone import parse_iso

CANCELLED_STATUSES = {'CANCELLED', 'REJECTED'}


def _text(value) -> Optional[str]:
    if value is None or value == '':
        return None
    return str(value)


def _int(value, default: Optional[int] = None) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def booking_id(booking: Dict[str, Any]) -> Optional[str]:
    return _text(booking.get('id'))


def booking_metadata(booking: Dict[str, Any]) -> Dict[str, Any]:
    metadata = booking.get('metadata')
    return metadata if isinstance(metadata, dict) else {}


def entry_metadata(entry: ScheduleEntry) -> Dict[str, str]:
    """Metadata written onto the booking for `entry`"""
    metadata = {
        'course': entry.course.title,
        'courseId': entry.course.id,
        'courseColor': entry.course.color,
        'company': entry.tenant_id,
        'tenantId': entry.tenant_id,
        'room': entry.room,
        'notes': entry.notes,
        'instructorId': entry.instructor.id,
        'instructorName': entry.instructor.name,
        'instructorEmail': entry.instructor.email,
        'durationSlots': entry.duration,
        'localId': entry.id,
        'weekStart': entry.week_start.isoformat(),
        'dayIndex': entry.day_index,
        'timeSlotIndex': entry.time_slot_index,
    }
    return {key: str(value) for key, value in metadata.items() if value is not None}


def booking_request(entry: ScheduleEntry, grid) -> Dict[str, Any]:
    """Keyword arguments for ProviderClient.create_booking"""
    start, end = grid.span_times(entry.week_start, entry.day_index, entry.time_slot_index, entry.duration)
    return {
        'event_type_id': entry.event_type_id,
        'start_time': start,
        'end_time': end,
        'attendee': {'name': entry.instructor.name, 'email': entry.instructor.email},
        'metadata': entry_metadata(entry),
        'location': entry.room or 'TBD',
        'title': entry.course.title,
    }


def booking_patch(entry: ScheduleEntry, grid) -> Dict[str, Any]:
    """Patch body that brings an existing booking in line with `entry`"""
    start, end = grid.span_times(entry.week_start, entry.day_index, entry.time_slot_index, entry.duration)
    return {
        'start': start,
        'end': end,
        'title': entry.course.title,
        'location': entry.room or 'TBD',
        'metadata': entry_metadata(entry),
    }


def is_cancelled(booking: Dict[str, Any]) -> bool:
    return str(booking.get('status') or '').upper() in CANCELLED_STATUSES


def booking_tenant(booking: Dict[str, Any]) -> Optional[str]:
    metadata = booking_metadata(booking)
    return _text(metadata.get('tenantId') or metadata.get('company'))


def booking_local_id(booking: Dict[str, Any]) -> Optional[str]:
    """Internal entry id for bookings this system created, else None"""
    return _text(booking_metadata(booking).get('localId'))


def booking_times(booking: Dict[str, Any]):
    start = parse_iso(booking.get('startTime') or booking.get('start'))
    end = parse_iso(booking.get('endTime') or booking.get('end'))
    return start, end


def booking_placement(booking: Dict[str, Any], grid, week_start: date) -> Optional[Tuple[int, int, int]]:
    """(day_index, time_slot_index, duration) on the grid, or None if it does not fit"""
    start, end = booking_times(booking)
    if start is None:
        return None
    placement = grid.datetime_to_slot(week_start, start)
    if placement is None:
        return None
    day_index, slot_index = placement

    duration = _int(booking_metadata(booking).get('durationSlots'))
    if duration is None and end is not None:
        minutes = int((end - start).total_seconds() // 60)
        duration = grid.duration_to_slots(slot_index, minutes)
    duration = max(1, min(duration or 1, grid.slot_count - slot_index))
    return day_index, slot_index, duration


def booking_to_entry_data(booking: Dict[str, Any], duration: int,
                          provenance: Provenance = Provenance.HYBRID) -> EntryData:
    metadata = booking_metadata(booking)
    attendees = booking.get('attendees') or [{}]
    attendee = attendees[0] if isinstance(attendees[0], dict) else {}

    return EntryData(
        course=CourseRef(
            id=_text(metadata.get('courseId')),
            title=metadata.get('course') or booking.get('title') or "Untitled Course",
            color=metadata.get('courseColor') or "bg-blue-500",
        ),
        instructor=InstructorRef(
            id=_text(metadata.get('instructorId')),
            name=metadata.get('instructorName') or attendee.get('name') or "TBD",
            email=metadata.get('instructorEmail') or attendee.get('email'),
        ),
        room=metadata.get('room') or booking.get('location') or "TBD",
        notes=metadata.get('notes'),
        duration=duration,
        event_type_id=_text(booking.get('eventTypeId')),
        external_id=booking_id(booking),
        provenance=provenance,
    )


def booking_to_entry(booking: Dict[str, Any], tenant_id: str, week_start: date,
                     placement: Tuple[int, int, int]) -> ScheduleEntry:
    """Transient entry used to compare a booking against the internal view"""
    day_index, slot_index, duration = placement
    data = booking_to_entry_data(booking, duration, Provenance.EXTERNAL)
    return ScheduleEntry(
        tenant_id=tenant_id,
        week_start=week_start,
        day_index=day_index,
        time_slot_index=slot_index,
        course=data.course,
        instructor=data.instructor,
        room=data.room,
        notes=data.notes,
        duration=data.duration,
        external_id=data.external_id,
        event_type_id=data.event_type_id,
        provenance=Provenance.EXTERNAL,
    )
