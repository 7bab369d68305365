"""
Time grid tests - slot <-> wall-clock mapping in the tenant's zone
"""
from datetime import date, datetime

import pytest
import pytz

from conftest import WEEK, ZONE
from errors import InvalidPlacement
from grid import TimeGrid, TimeSlot, week_start_of


class TestPlacement:

    @pytest.mark.grid
    @pytest.mark.parametrize('day, slot, duration', [
        (7, 0, 1),
        (-1, 0, 1),
        (0, 7, 1),
        (0, 0, 0),
        (0, 6, 2),
    ])
    def test_out_of_grid_rejected(self, grid, day, slot, duration):
        with pytest.raises(InvalidPlacement):
            grid.validate_placement(day, slot, duration)

    @pytest.mark.grid
    def test_last_slot_fits(self, grid):
        grid.validate_placement(6, 6, 1)
        grid.validate_placement(0, 0, 7)


class TestWallClock:

    @pytest.mark.grid
    def test_slot_start_is_local(self, grid):
        start = grid.slot_to_datetime(WEEK, 0, 0)
        assert start.astimezone(pytz.UTC) == pytz.UTC.localize(datetime(2025, 1, 27, 1, 0))
        assert start.strftime('%H:%M') == '08:00'

    @pytest.mark.grid
    def test_span_ends_at_end_of_last_slot(self, grid):
        """A two-slot entry includes the break between the slots"""
        start, end = grid.span_times(WEEK, 0, 0, 2)
        assert start.strftime('%H:%M') == '08:00'
        assert end.strftime('%H:%M') == '11:15'
        assert (end - start).total_seconds() == 195 * 60

    @pytest.mark.grid
    def test_week_range_is_utc(self, grid):
        start, end = grid.week_range(WEEK)
        assert start == pytz.UTC.localize(datetime(2025, 1, 26, 17, 0))
        assert end == pytz.UTC.localize(datetime(2025, 2, 2, 17, 0))

    @pytest.mark.grid
    def test_week_start_normalized_in_tenant_zone(self, grid):
        # Sunday evening in UTC is already Monday morning in Bangkok
        moment = pytz.UTC.localize(datetime(2025, 1, 26, 18, 0))
        assert grid.week_date(moment) == date(2025, 1, 27)
        assert grid.week_date(date(2025, 1, 30)) == WEEK

    @pytest.mark.grid
    def test_week_start_is_idempotent(self):
        first = week_start_of(date(2025, 1, 29), ZONE)
        assert week_start_of(first, ZONE) == first


class TestReverseMapping:

    @pytest.mark.grid
    def test_exact_slot(self, grid):
        moment = pytz.UTC.localize(datetime(2025, 1, 28, 7, 0))  # 14:00 local, Tuesday
        assert grid.datetime_to_slot(WEEK, moment) == (1, 3)

    @pytest.mark.grid
    def test_nearest_slot_within_tolerance(self, grid):
        moment = ZONE.localize(datetime(2025, 1, 27, 10, 0))
        assert grid.datetime_to_slot(WEEK, moment) == (0, 1)

    @pytest.mark.grid
    def test_off_grid_time(self, grid):
        moment = ZONE.localize(datetime(2025, 1, 27, 13, 0))
        assert grid.datetime_to_slot(WEEK, moment) is None

    @pytest.mark.grid
    def test_other_week(self, grid):
        moment = ZONE.localize(datetime(2025, 2, 3, 8, 0))
        assert grid.datetime_to_slot(WEEK, moment) is None

    @pytest.mark.grid
    def test_minutes_to_slots(self, grid):
        assert grid.duration_to_slots(0, 90) == 1
        assert grid.duration_to_slots(0, 180) == 2
        assert grid.duration_to_slots(5, 600) == 2


class TestConfiguration:

    @pytest.mark.grid
    def test_slot_labels(self):
        grid = TimeGrid([TimeSlot.parse('08:00', 90)], zone=ZONE)
        assert grid.describe() == [{'index': 0, 'start': '08:00', 'durationMinutes': 90,
                                    'label': '08:00 - 09:30'}]

    @pytest.mark.grid
    def test_empty_grid_rejected(self):
        with pytest.raises(ValueError):
            TimeGrid([], zone=ZONE)
