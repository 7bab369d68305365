# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Presentation Adapter - read-only projections of the engine's per-slot map

Nothing here mutates engine state; all changes go through the engine's commands.
"""
from typing import Any, Dict, List, Optional

from grid.time_grid import DAYS_PER_WEEK
from models import ScheduleEntry, slot_key


class ScheduleView:
    """Keyed lookups by "dayIndex-timeSlotIndex" over an engine (or ScheduleService)"""

    def __init__(self, source):
        self._source = source

    def _snapshot(self) -> Dict[str, ScheduleEntry]:
        engine = getattr(self._source, 'engine', self._source)
        return engine.snapshot()

    def get(self, day_index: int, time_slot_index: int) -> Optional[ScheduleEntry]:
        return self._snapshot().get(slot_key(day_index, time_slot_index))

    def has(self, day_index: int, time_slot_index: int) -> bool:
        return slot_key(day_index, time_slot_index) in self._snapshot()

    def all_for_day(self, day_index: int) -> List[ScheduleEntry]:
        entries = [e for e in self._snapshot().values() if e.day_index == day_index]
        return sorted(entries, key=lambda e: e.time_slot_index)

    def covered_keys(self) -> Dict[str, str]:
        """Every covered cell -> key of the entry starting there (for row-spanning renders)"""
        covered = {}
        for key, entry in self._snapshot().items():
            for index in range(entry.time_slot_index, entry.last_slot_index + 1):
                covered[slot_key(entry.day_index, index)] = key
        return covered

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        return {key: entry.to_dict() for key, entry in sorted(self._snapshot().items())}

    def week_grid(self) -> List[List[Optional[Dict[str, Any]]]]:
        """7 x slot_count matrix of entry dicts (None where no entry starts)"""
        engine = getattr(self._source, 'engine', self._source)
        snapshot = self._snapshot()
        return [
            [
                snapshot[slot_key(day, slot)].to_dict() if slot_key(day, slot) in snapshot else None
                for slot in range(engine.grid.slot_count)
            ]
            for day in range(DAYS_PER_WEEK)
        ]
