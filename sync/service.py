# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Schedule service - the interface the UI layer talks to

Mutations return immediately with a Future. The optimistic change is already
in the view when the call returns; the Future resolves to an OperationResult
once the entry is confirmed, or raises the error that rolled it back.
"""
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

import config
from models import ScheduleEntry
from sync.engine import SyncEngine
from sync.events import EngineStatus

logger = logging.getLogger(__name__)


def _failed(error: Exception) -> Future:
    future = Future()
    future.set_exception(error)
    return future


class ScheduleService:
    """Non-blocking facade over one SyncEngine"""

    def __init__(self, engine: SyncEngine, executor: Optional[ThreadPoolExecutor] = None,
                 max_workers: Optional[int] = None, catalog=None):
        self.engine = engine
        self.catalog = catalog
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max_workers or config.SERVICE_WORKERS,
            thread_name_prefix=f"schedule-{engine.tenant_id}",
        )

    def _submit(self, begin: Callable, *args) -> Future:
        # Validation and state errors surface through the Future like any other failure
        try:
            pending = begin(*args)
        except Exception as e:
            logger.info(f"Command rejected: {e}")
            return _failed(e)
        return self.executor.submit(self.engine.complete, pending)

    # Commands

    def create_entry(self, day_index: int, time_slot_index: int, data) -> Future:
        return self._submit(self.engine.begin_create, day_index, time_slot_index, data)

    def update_entry(self, entry_id: str, patch: Dict) -> Future:
        return self._submit(self.engine.begin_update, entry_id, patch)

    def delete_entry(self, day_index: int, time_slot_index: int) -> Future:
        return self._submit(self.engine.begin_delete, day_index, time_slot_index)

    def resize_entry(self, entry_id: str, new_duration: int) -> Future:
        return self._submit(self.engine.begin_resize, entry_id, new_duration)

    def move_entry(self, entry_id: str, day_index: int, time_slot_index: int) -> Future:
        return self._submit(self.engine.begin_move, entry_id, day_index, time_slot_index)

    def reconcile_week(self, week_start=None) -> Future:
        return self.executor.submit(self.engine.reconcile, week_start)

    # Queries

    def get_entry(self, day_index: int, time_slot_index: int) -> Optional[ScheduleEntry]:
        return self.engine.get(day_index, time_slot_index)

    def has_entry(self, day_index: int, time_slot_index: int) -> bool:
        return self.engine.has(day_index, time_slot_index)

    def list_day(self, day_index: int) -> List[ScheduleEntry]:
        return self.engine.list_day(day_index)

    def find_entry(self, entry_id: str) -> Optional[ScheduleEntry]:
        return self.engine.find(entry_id)

    def status(self) -> EngineStatus:
        return self.engine.status()

    def subscribe_status(self, listener: Callable[[EngineStatus], None]) -> Callable[[], None]:
        """Stream of {totalEntries, lastSyncTimestamp, providerConnected}; the current value is sent first"""
        unsubscribe = self.engine.subscribe_status(listener)
        listener(self.engine.status())
        return unsubscribe

    def subscribe(self, listener) -> Callable[[], None]:
        return self.engine.subscribe(listener)

    def switch_week(self, week_start) -> None:
        self.engine.start(week_start)

    def initialize_event_types(self) -> Dict[str, int]:
        """Create provider event types for every catalog course of the tenant"""
        if self.catalog is None:
            return {'created': 0, 'existing': 0, 'failed': 0}
        courses = self.catalog.list_courses(self.engine.tenant_id)
        return self.engine.event_types.initialize_event_types(courses)

    def shutdown(self, wait: bool = True):
        self.engine.stop()
        if self._owns_executor:
            self.executor.shutdown(wait=wait)
