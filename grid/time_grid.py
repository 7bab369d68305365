# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Time Grid Model - pure mapping between (dayIndex, timeSlotIndex) and wall-clock time

All functions are side-effect free. Datetimes returned are timezone-aware in the
tenant's zone.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Tuple, Union

import pytz

import config
from errors import InvalidPlacement
from utils.timezone import get_zone, tenant_zone

DAYS_PER_WEEK = 7


@dataclass(frozen=True)
class TimeSlot:
    start: time
    duration_minutes: int

    @property
    def start_minutes(self) -> int:
        return self.start.hour * 60 + self.start.minute

    @property
    def label(self) -> str:
        end_minutes = self.start_minutes + self.duration_minutes
        return f"{self.start.strftime('%H:%M')} - {end_minutes // 60:02d}:{end_minutes % 60:02d}"

    @classmethod
    def parse(cls, start: str, duration_minutes: int) -> 'TimeSlot':
        hour, minute = start.split(':')
        return cls(time(int(hour), int(minute)), int(duration_minutes))


def week_start_of(value: Union[date, datetime], zone=None, first_day: int = 0) -> datetime:
    """
    Normalize any date/datetime to midnight of the first day of its week in `zone`

    Aware datetimes are first converted into `zone`; naive datetimes and plain
    dates are taken as local to `zone`. Idempotent.
    """
    zone = zone or get_zone()
    if isinstance(value, datetime):
        local_date = value.astimezone(zone).date() if value.tzinfo else value.date()
    else:
        local_date = value
    offset = (local_date.weekday() - first_day) % DAYS_PER_WEEK
    start_date = local_date - timedelta(days=offset)
    return zone.localize(datetime.combine(start_date, time.min))


def as_week_date(value: Union[date, datetime], zone=None, first_day: int = 0) -> date:
    """The calendar date of the week start, as stored in the Internal Store"""
    return week_start_of(value, zone, first_day).date()


class TimeGrid:
    """Weekly grid: DAYS_PER_WEEK days x len(slots) time slots"""

    def __init__(self, slots: Iterable[TimeSlot], zone=None, first_day: int = 0,
                 match_tolerance_minutes: int = 30):
        self.slots: List[TimeSlot] = list(slots)
        if not self.slots:
            raise ValueError("time grid needs at least one slot")
        self.zone = zone or get_zone()
        self.first_day = first_day
        self.match_tolerance_minutes = match_tolerance_minutes

    @classmethod
    def from_config(cls, tenant_id: Optional[str] = None) -> 'TimeGrid':
        zone = tenant_zone(tenant_id) if tenant_id else get_zone()
        slots = [TimeSlot.parse(start, minutes) for start, minutes in config.parse_time_slots()]
        return cls(slots, zone=zone, first_day=config.WEEK_FIRST_DAY,
                   match_tolerance_minutes=config.SLOT_MATCH_TOLERANCE_MIN)

    @property
    def slot_count(self) -> int:
        return len(self.slots)

    def week_start_of(self, value: Union[date, datetime]) -> datetime:
        return week_start_of(value, self.zone, self.first_day)

    def week_date(self, value: Union[date, datetime]) -> date:
        return self.week_start_of(value).date()

    def validate_placement(self, day_index: int, time_slot_index: int, duration: int = 1):
        if not 0 <= day_index < DAYS_PER_WEEK:
            raise InvalidPlacement(f"day index {day_index} out of range 0-{DAYS_PER_WEEK - 1}",
                                   day_index=day_index)
        if not 0 <= time_slot_index < self.slot_count:
            raise InvalidPlacement(
                f"time slot index {time_slot_index} out of range 0-{self.slot_count - 1}",
                time_slot_index=time_slot_index)
        if duration < 1:
            raise InvalidPlacement(f"duration must be at least 1 slot, got {duration}",
                                   duration=duration)
        if time_slot_index + duration > self.slot_count:
            raise InvalidPlacement(
                f"span of {duration} slots starting at {time_slot_index} runs past the last slot",
                time_slot_index=time_slot_index, duration=duration)

    def slot_to_datetime(self, week_start: Union[date, datetime], day_index: int,
                         time_slot_index: int) -> datetime:
        """Start of the given cell as an aware datetime in the grid's zone"""
        self.validate_placement(day_index, time_slot_index)
        day = self.week_date(week_start) + timedelta(days=day_index)
        return self.zone.localize(datetime.combine(day, self.slots[time_slot_index].start))

    def slot_end_datetime(self, week_start, day_index: int, time_slot_index: int) -> datetime:
        start = self.slot_to_datetime(week_start, day_index, time_slot_index)
        return self.zone.normalize(start + timedelta(minutes=self.slots[time_slot_index].duration_minutes))

    def span_times(self, week_start, day_index: int, time_slot_index: int,
                   duration: int) -> Tuple[datetime, datetime]:
        """(start, end) of an entry covering `duration` consecutive slots

        The end is the end of the last covered slot, so breaks between slots are
        part of the span.
        """
        self.validate_placement(day_index, time_slot_index, duration)
        start = self.slot_to_datetime(week_start, day_index, time_slot_index)
        end = self.slot_end_datetime(week_start, day_index, time_slot_index + duration - 1)
        return start, end

    def span_minutes(self, time_slot_index: int, duration: int) -> int:
        first = self.slots[time_slot_index]
        last = self.slots[time_slot_index + duration - 1]
        return last.start_minutes + last.duration_minutes - first.start_minutes

    def week_range(self, week_start) -> Tuple[datetime, datetime]:
        """[start, end) of the week in UTC, suitable for provider queries"""
        start = self.week_start_of(week_start)
        end = self.zone.localize(datetime.combine(start.date() + timedelta(days=DAYS_PER_WEEK), time.min))
        return start.astimezone(pytz.UTC), end.astimezone(pytz.UTC)

    def datetime_to_slot(self, week_start, moment: datetime) -> Optional[Tuple[int, int]]:
        """Map a wall-clock instant back onto the grid; None if it is off-grid"""
        if moment.tzinfo is None:
            moment = pytz.UTC.localize(moment)
        local = moment.astimezone(self.zone)
        day_index = (local.date() - self.week_date(week_start)).days
        if not 0 <= day_index < DAYS_PER_WEEK:
            return None

        minutes = local.hour * 60 + local.minute
        best = None
        for index, slot in enumerate(self.slots):
            distance = abs(minutes - slot.start_minutes)
            if distance <= self.match_tolerance_minutes and (best is None or distance < best[1]):
                best = (index, distance)
        if best is None:
            return None
        return day_index, best[0]

    def duration_to_slots(self, time_slot_index: int, minutes: int) -> int:
        """Number of slots (>= 1) needed to cover `minutes` starting at a slot"""
        for duration in range(1, self.slot_count - time_slot_index + 1):
            if self.span_minutes(time_slot_index, duration) >= minutes - self.match_tolerance_minutes:
                return duration
        return self.slot_count - time_slot_index

    def describe(self) -> List[dict]:
        return [{'index': i, 'start': s.start.strftime('%H:%M'),
                 'durationMinutes': s.duration_minutes, 'label': s.label}
                for i, s in enumerate(self.slots)]
