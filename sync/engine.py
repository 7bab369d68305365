# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Sync Engine - single authority that mutates schedule entries for one tenant

Commands come in (create/update/delete/resize/move/reconcile), state-transition
events go out. The local view is optimistic: a pending entry is visible as soon
as a command is accepted, then confirmed or rolled back once the Internal Store
answers. The External Provider is a mirror; its failures never undo an internal
write.
"""
import json
import logging
import time
import uuid
from datetime import date, datetime
from threading import RLock
from typing import Callable, Dict, List, Optional

import config
from errors import (
    EntryNotFound, NotAuthenticated, NotInitialized, PersistenceFailed, ProviderError,
    SlotConflict, SlotOccupied, ValidationError
)
from grid import TimeGrid
from models import CourseRef, EntryData, EntryState, InstructorRef, Provenance, ScheduleEntry, slot_key
from provider import mapping
from provider.client import ProviderResult
from provider.event_types import EventTypeResolver
from provider.null_client import NullProviderClient
from store.subscriptions import ScheduleCallbacks
from sync.events import (
    CONFIRMED, CONFLICT, LOADED, NOTICE, OPTIMISTIC, PENDING_SYNC_WARNING, PROVIDER_DEGRADED,
    REMOTE, ROLLED_BACK, Conflict, EngineEvent, EngineStatus, OperationResult, PendingOperation
)
from sync.reconciler import Reconciler
from sync.sync_log import SyncLog
from utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from utils.retry import RetryContext
from utils.timezone import utc_now

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = ('course', 'instructor', 'room', 'notes')


def _jsonable(value):
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def _summarize(data):
    if isinstance(data, list):
        return {'count': len(data)}
    if isinstance(data, dict):
        return _jsonable(data)
    return None if data is None else {'data': str(data)}


class SyncEngine:
    """Coordinates the Internal Store and the External Provider for one tenant and week"""

    def __init__(self, tenant_id: str, store, provider=None, grid: Optional[TimeGrid] = None,
                 sync_log: Optional[SyncLog] = None, event_types: Optional[EventTypeResolver] = None,
                 reconciler=None, breaker: Optional[CircuitBreaker] = None,
                 current_user: Optional[Callable[[], Optional[str]]] = None,
                 dev_mode: Optional[bool] = None, max_retries: Optional[int] = None,
                 base_delay: Optional[float] = None, sleep: Callable[[float], None] = time.sleep,
                 session_id: Optional[str] = None, import_untagged: Optional[bool] = None):
        self.tenant_id = tenant_id
        self.store = store
        self.provider = provider if provider is not None else NullProviderClient()
        self.grid = grid or TimeGrid.from_config(tenant_id)
        self.sync_log = sync_log or SyncLog(config.SYNC_LOG_MAX_ENTRIES)
        self.event_types = event_types or EventTypeResolver(
            self.provider, tenant_id, auto_create=config.AUTO_CREATE_EVENT_TYPES)
        self.reconciler = reconciler or Reconciler()
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=config.CIRCUIT_BREAKER_FAIL_MAX,
            recovery_timeout=config.CIRCUIT_BREAKER_RESET_TIMEOUT,
            expected_exception=ProviderError,
            name=f"provider:{tenant_id}",
        )
        self.current_user = current_user
        self.dev_mode = config.DEV_MODE if dev_mode is None else dev_mode
        self.max_retries = config.PROVIDER_MAX_RETRIES if max_retries is None else max_retries
        self.base_delay = config.PROVIDER_BASE_DELAY if base_delay is None else base_delay
        self.import_untagged = config.RECONCILE_IMPORT_UNTAGGED if import_untagged is None else import_untagged
        self.session_id = session_id or str(uuid.uuid4())
        self._sleep = sleep

        self._lock = RLock()
        self._view: Dict[str, ScheduleEntry] = {}
        self._in_flight = set()
        self._removed_remotely = set()
        self._conflicts: Dict[tuple, Conflict] = {}
        self._week_start: Optional[date] = None
        self._subscription = None
        self._started = False
        self._last_sync: Optional[datetime] = None
        self._provider_ok = True
        self._listeners: List[Callable[[EngineEvent], None]] = []
        self._status_listeners: List[Callable[[EngineStatus], None]] = []

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @property
    def week_start(self) -> Optional[date]:
        return self._week_start

    @property
    def started(self) -> bool:
        return self._started

    @property
    def reconcile_origin(self) -> str:
        """Origin tag of reconcile writes; the engine merges them like remote events"""
        return f"{self.session_id}/reconcile"

    def start(self, week_start=None) -> 'SyncEngine':
        """Load a week into the local view and subscribe to its changes

        Calling it again switches the engine to another week.
        """
        week = self.grid.week_date(week_start or datetime.now(self.grid.zone))
        self._release_subscription()

        callbacks = ScheduleCallbacks(
            on_insert=self._on_remote_upsert,
            on_update=self._on_remote_upsert,
            on_delete=self._on_remote_delete,
        )
        with self._lock:
            self._started = False
            self._week_start = week
            self._view = {}
            self._in_flight.clear()
            self._removed_remotely.clear()

        # Subscribe before loading so nothing committed in between is lost
        subscription = self.store.subscribe(self.tenant_id, week, callbacks, subscriber=self.session_id)
        try:
            entries = self.store.load_week(self.tenant_id, week)
        except Exception:
            self.store.unsubscribe(subscription)
            raise

        with self._lock:
            self._subscription = subscription
            self._view = dict(entries)
            self._conflicts.clear()
            self._last_sync = utc_now()
            self._started = True

        self._probe_provider()
        logger.info(f"🚀 Engine {self.session_id[:8]} started for {self.tenant_id} week {week} "
                    f"({len(entries)} entries)")
        self._emit(EngineEvent(LOADED, message=f"Loaded {len(entries)} entries for week {week}"))
        self._emit_status()
        return self

    def stop(self):
        self._release_subscription()
        with self._lock:
            self._started = False
        logger.info(f"Engine {self.session_id[:8]} stopped for {self.tenant_id}")

    def _release_subscription(self):
        with self._lock:
            subscription, self._subscription = self._subscription, None
        if subscription is not None:
            self.store.unsubscribe(subscription)

    def _probe_provider(self):
        result = self.provider.get_me()
        self._provider_ok = result.ok
        if result.ok:
            logger.info("✅ External provider reachable")
        else:
            logger.warning(f"⚠️ External provider unreachable: {result.error.message}")

    def _require_started(self) -> date:
        with self._lock:
            if not self._started:
                raise NotInitialized("engine has not been started")
            return self._week_start

    def _identity(self, required: bool = True) -> Optional[str]:
        user = self.current_user() if self.current_user else None
        if user:
            return str(user)
        if required and not self.dev_mode:
            raise NotAuthenticated("no authenticated user")
        return None

    # ------------------------------------------------------------------
    # event stream
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[EngineEvent], None]) -> Callable[[], None]:
        """Register a state-transition listener; returns a function that removes it"""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def subscribe_status(self, listener: Callable[[EngineStatus], None]) -> Callable[[], None]:
        with self._lock:
            self._status_listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._status_listeners:
                    self._status_listeners.remove(listener)
        return unsubscribe

    def _emit(self, event: EngineEvent):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Engine listener failed on {event.kind}: {e}", exc_info=True)

    def _emit_status(self):
        status = self.status()
        with self._lock:
            listeners = list(self._status_listeners)
        for listener in listeners:
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Status listener failed: {e}", exc_info=True)

    @property
    def provider_connected(self) -> bool:
        return self._provider_ok and not self.breaker.is_open

    def status(self) -> EngineStatus:
        with self._lock:
            return EngineStatus(
                total_entries=len(self._view),
                last_sync_timestamp=self._last_sync,
                provider_connected=self.provider_connected,
                week_start=self._week_start,
            )

    def mark_synced(self):
        with self._lock:
            self._last_sync = utc_now()
        self._emit_status()

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, ScheduleEntry]:
        with self._lock:
            return dict(self._view)

    def get(self, day_index: int, time_slot_index: int) -> Optional[ScheduleEntry]:
        with self._lock:
            return self._view.get(slot_key(day_index, time_slot_index))

    def has(self, day_index: int, time_slot_index: int) -> bool:
        return self.get(day_index, time_slot_index) is not None

    def entry_at(self, day_index: int, time_slot_index: int) -> Optional[ScheduleEntry]:
        """Entry whose span covers the cell, not only the one starting there"""
        with self._lock:
            return next((e for e in self._view.values() if e.covers(day_index, time_slot_index)), None)

    def list_day(self, day_index: int) -> List[ScheduleEntry]:
        with self._lock:
            entries = [e for e in self._view.values() if e.day_index == day_index]
        return sorted(entries, key=lambda e: e.time_slot_index)

    def find(self, entry_id: str) -> Optional[ScheduleEntry]:
        with self._lock:
            return next((e for e in self._view.values() if e.id == entry_id), None)

    def conflicts(self) -> List[Conflict]:
        with self._lock:
            return sorted(self._conflicts.values(), key=lambda c: c.detected_at)

    def register_conflict(self, conflict: Conflict) -> bool:
        """Record a conflict; False if the same disagreement was already flagged"""
        with self._lock:
            if conflict.signature in self._conflicts:
                return False
            self._conflicts[conflict.signature] = conflict
        logger.warning(f"⚠️ Conflict at {conflict.key}: local '{conflict.local_course}' "
                       f"vs external '{conflict.external_course}'")
        self._emit(EngineEvent(CONFLICT, conflict.key, message=f"Conflict with booking {conflict.booking_id}"))
        return True

    # ------------------------------------------------------------------
    # commands
    #
    # Each command is begin_*() (validate, apply the optimistic change, return
    # immediately) followed by complete() (store write, provider mirror,
    # confirm or roll back). The plain methods run both on the caller's thread.
    # ------------------------------------------------------------------

    def create(self, day_index: int, time_slot_index: int, data) -> OperationResult:
        """Place a new entry into an absent slot"""
        return self.complete(self.begin_create(day_index, time_slot_index, data))

    def update(self, entry_id: str, patch: Dict) -> OperationResult:
        """Patch course, instructor, room or notes of an existing entry"""
        return self.complete(self.begin_update(entry_id, patch))

    def resize(self, entry_id: str, new_duration: int) -> OperationResult:
        """Change how many consecutive slots an entry spans"""
        return self.complete(self.begin_resize(entry_id, new_duration))

    def move(self, entry_id: str, day_index: int, time_slot_index: int) -> OperationResult:
        """Move an entry to another start slot, keeping its duration"""
        return self.complete(self.begin_move(entry_id, day_index, time_slot_index))

    def delete(self, day_index: int, time_slot_index: int) -> OperationResult:
        """Remove the entry starting at the slot; the internal deletion is authoritative"""
        return self.complete(self.begin_delete(day_index, time_slot_index))

    def reconcile(self, week_start=None):
        """Diff the week against the provider; see Reconciler.run"""
        current_week = self._require_started()
        week = self.grid.week_date(week_start) if week_start else current_week
        return self.reconciler.run(self, week)

    def begin_create(self, day_index: int, time_slot_index: int, data) -> PendingOperation:
        week = self._require_started()
        user = self._identity()
        if not isinstance(data, EntryData):
            data = EntryData.from_dict(data)
        self.grid.validate_placement(day_index, time_slot_index, data.duration)
        key = slot_key(day_index, time_slot_index)

        with self._lock:
            if key in self._view or key in self._in_flight:
                raise SlotOccupied(f"slot {key} is already occupied", slot=key)
            for other in self._view.values():
                if other.overlaps(day_index, time_slot_index, data.duration):
                    raise SlotConflict(f"slot {key} (+{data.duration}) overlaps entry at {other.key}",
                                       slot=key, entry_id=other.id)
            optimistic = ScheduleEntry(
                tenant_id=self.tenant_id, week_start=week, day_index=day_index,
                time_slot_index=time_slot_index, course=data.course, instructor=data.instructor,
                room=data.room, notes=data.notes, duration=data.duration,
                event_type_id=data.event_type_id, provenance=Provenance.INTERNAL,
                created_by=user, updated_by=user, state=EntryState.PENDING_CREATE,
            )
            self._view[key] = optimistic
            self._in_flight.add(key)
        self._emit(EngineEvent(OPTIMISTIC, key, optimistic, operation='create'))

        internal = EntryData(
            course=data.course, instructor=data.instructor, room=data.room, notes=data.notes,
            duration=data.duration, event_type_id=data.event_type_id, provenance=Provenance.INTERNAL,
        )
        return PendingOperation('create', key, week, user, optimistic=optimistic, data=internal)

    def begin_update(self, entry_id: str, patch: Dict) -> PendingOperation:
        week = self._require_started()
        user = self._identity()
        changes = self._normalize_patch(patch)

        with self._lock:
            current = self._claim(entry_id)
            optimistic = current.with_changes(state=EntryState.PENDING_UPDATE,
                                              updated_by=user or current.updated_by, **changes)
            self._begin_update(current, optimistic)
        return self._pending_update('update', week, user, current, optimistic, changes)

    def begin_resize(self, entry_id: str, new_duration: int) -> PendingOperation:
        week = self._require_started()
        user = self._identity()
        new_duration = int(new_duration)

        with self._lock:
            current = self._claim(entry_id)
            self.grid.validate_placement(current.day_index, current.time_slot_index, new_duration)
            self._check_free(current, current.day_index, current.time_slot_index, new_duration)
            if new_duration == current.duration:
                return PendingOperation('resize', current.key, week, user, current=current,
                                        noop_message="Duration unchanged")
            optimistic = current.with_changes(duration=new_duration, state=EntryState.PENDING_UPDATE)
            self._begin_update(current, optimistic)
        return self._pending_update('resize', week, user, current, optimistic, {'duration': new_duration})

    def begin_move(self, entry_id: str, day_index: int, time_slot_index: int) -> PendingOperation:
        week = self._require_started()
        user = self._identity()

        with self._lock:
            current = self._claim(entry_id)
            self.grid.validate_placement(day_index, time_slot_index, current.duration)
            target = slot_key(day_index, time_slot_index)
            if target == current.key:
                return PendingOperation('move', current.key, week, user, current=current,
                                        noop_message="Position unchanged")
            if target in self._view or target in self._in_flight:
                raise SlotOccupied(f"slot {target} is already occupied", slot=target)
            self._check_free(current, day_index, time_slot_index, current.duration)
            optimistic = current.with_changes(day_index=day_index, time_slot_index=time_slot_index,
                                              state=EntryState.PENDING_UPDATE)
            self._begin_update(current, optimistic)
        changes = {'day_index': day_index, 'time_slot_index': time_slot_index}
        return self._pending_update('move', week, user, current, optimistic, changes)

    def begin_delete(self, day_index: int, time_slot_index: int) -> PendingOperation:
        week = self._require_started()
        user = self._identity()
        key = slot_key(day_index, time_slot_index)

        with self._lock:
            if key in self._in_flight:
                raise SlotOccupied(f"slot {key} has an operation in flight", slot=key)
            entry = self._view.get(key)
            if entry is None:
                raise EntryNotFound(f"no entry at slot {key}", slot=key)
            del self._view[key]
            self._in_flight.add(key)
        self._emit(EngineEvent(OPTIMISTIC, key, previous=entry, operation='delete'))
        return PendingOperation('delete', key, week, user, current=entry)

    def complete(self, pending: PendingOperation) -> OperationResult:
        """Finish a begun command: store write, provider mirror, confirm or roll back"""
        if pending.noop_message:
            return OperationResult(pending.operation, pending.current, pending.noop_message)
        if pending.operation == 'create':
            return self._complete_create(pending)
        if pending.operation == 'delete':
            return self._complete_delete(pending)
        return self._complete_update(pending)

    def _complete_create(self, pending: PendingOperation) -> OperationResult:
        key, optimistic = pending.key, pending.optimistic
        try:
            with self._lock:
                if self._view.get(key) is not optimistic:
                    raise SlotOccupied(f"slot {key} was taken by another session", slot=key)
            entry = self._store_call('internal_create', None, self.store.upsert, self.tenant_id,
                                     pending.week_start, optimistic.day_index, optimistic.time_slot_index,
                                     pending.data, user_id=pending.user, origin=self.session_id,
                                     insert_only=True)
        except Exception as e:
            with self._lock:
                self._in_flight.discard(key)
                if self._view.get(key) is optimistic:
                    del self._view[key]
            self._emit(EngineEvent(ROLLED_BACK, key, previous=optimistic, operation='create',
                                   message=str(e)))
            self._emit_status()
            self._raise_store_failure('create', e)

        entry, warning, error = self._mirror_create(entry, pending.user)
        self._settle(entry, {key})
        self._emit(EngineEvent(CONFIRMED, key, entry, operation='create'))
        self._emit_status()

        logger.info(f"✅ Created {entry.course.title} at {key} ({entry.provenance.value})")
        return OperationResult('create', entry, f"Scheduled {entry.course.title}", warning, error)

    def _complete_delete(self, pending: PendingOperation) -> OperationResult:
        key, entry = pending.key, pending.current
        try:
            self._store_call('internal_delete', entry.id, self.store.remove, self.tenant_id,
                             pending.week_start, entry.day_index, entry.time_slot_index,
                             origin=self.session_id)
        except Exception as e:
            with self._lock:
                self._in_flight.discard(key)
                self._view.setdefault(key, entry)
            self._emit(EngineEvent(ROLLED_BACK, key, entry, operation='delete', message=str(e)))
            self._emit_status()
            self._raise_store_failure('delete', e)

        warning = error = None
        if entry.external_id:
            result = self._provider_call(
                'external_delete', self.provider.delete_booking, entry.external_id,
                reason='Schedule entry removed', local_id=entry.id, external_id=entry.external_id,
            )
            # Already gone on the provider side is what we wanted
            if not result.ok and result.error.status != 404:
                error = result.error
                warning = "removed locally, external booking will be cleaned up on the next reconcile"
                self._emit(EngineEvent(PROVIDER_DEGRADED, key, previous=entry, operation='delete',
                                       message=error.message))

        with self._lock:
            self._in_flight.discard(key)
            self._removed_remotely.discard(entry.id)
            self._last_sync = utc_now()
        self._emit(EngineEvent(CONFIRMED, key, previous=entry, operation='delete'))
        self._emit_status()

        logger.info(f"🗑️ Deleted {entry.course.title} at {key}")
        return OperationResult('delete', entry, f"Removed {entry.course.title}", warning, error)

    # ------------------------------------------------------------------
    # command helpers
    # ------------------------------------------------------------------

    def _normalize_patch(self, patch: Dict) -> Dict:
        unknown = set(patch) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValidationError(f"cannot patch {sorted(unknown)}; use resize or move for placement",
                                  fields=sorted(unknown))
        changes = {}
        if 'course' in patch:
            course = patch['course']
            changes['course'] = course if isinstance(course, CourseRef) else CourseRef.from_dict(course)
        if 'instructor' in patch:
            instructor = patch['instructor']
            changes['instructor'] = (instructor if isinstance(instructor, InstructorRef)
                                     else InstructorRef.from_dict(instructor))
        if 'room' in patch:
            changes['room'] = patch['room'] or "TBD"
        if 'notes' in patch:
            changes['notes'] = patch['notes']
        return changes

    def _claim(self, entry_id: str) -> ScheduleEntry:
        """Entry by id, refusing entries with an operation in flight (lock held)"""
        current = next((e for e in self._view.values() if e.id == entry_id), None)
        if current is None:
            raise EntryNotFound(f"entry {entry_id} not found", entry_id=entry_id)
        if current.pending or current.key in self._in_flight:
            raise SlotOccupied(f"entry {entry_id} has an operation in flight", entry_id=entry_id)
        return current

    def _check_free(self, current: ScheduleEntry, day_index: int, start_index: int, duration: int):
        for other in self._view.values():
            if other is current or (other.id is not None and other.id == current.id):
                continue
            if other.overlaps(day_index, start_index, duration):
                raise SlotConflict(
                    f"span {slot_key(day_index, start_index)} (+{duration}) overlaps entry at {other.key}",
                    entry_id=other.id,
                )

    def _begin_update(self, current: ScheduleEntry, optimistic: ScheduleEntry):
        del self._view[current.key]
        self._view[optimistic.key] = optimistic
        self._in_flight.update({current.key, optimistic.key})

    def _pending_update(self, operation: str, week: date, user: Optional[str], current: ScheduleEntry,
                        optimistic: ScheduleEntry, changes: Dict) -> PendingOperation:
        self._emit(EngineEvent(OPTIMISTIC, optimistic.key, optimistic, current, operation=operation))
        return PendingOperation(operation, optimistic.key, week, user, current=current,
                                optimistic=optimistic, changes=changes)

    def _complete_update(self, pending: PendingOperation) -> OperationResult:
        operation, current, optimistic = pending.operation, pending.current, pending.optimistic
        keys = {current.key, optimistic.key}

        try:
            entry = self._store_call(f'internal_{operation}', current.id, self.store.update,
                                     self.tenant_id, current.id, pending.changes, user_id=pending.user,
                                     expected_version=current.version, origin=self.session_id)
        except Exception as e:
            with self._lock:
                self._in_flight.difference_update(keys)
                if self._view.get(optimistic.key) is optimistic:
                    del self._view[optimistic.key]
                    self._view.setdefault(current.key, current)
            self._emit(EngineEvent(ROLLED_BACK, current.key, current, optimistic, operation=operation,
                                   message=str(e)))
            self._emit_status()
            self._raise_store_failure(operation, e)

        warning = error = None
        if entry.external_id:
            error = self._mirror_update(operation, entry)
            if error is not None:
                warning = PENDING_SYNC_WARNING
            # external_id stays so reconcile can relink the booking
            provenance = Provenance.INTERNAL if error is not None else Provenance.HYBRID
            entry = self._restamp_provenance(entry, provenance, pending.user)

        self._settle(entry, keys)
        self._emit(EngineEvent(CONFIRMED, entry.key, entry, current, operation=operation))
        self._emit_status()
        logger.info(f"✅ {operation.capitalize()} {entry.course.title} at {entry.key} (v{entry.version})")
        return OperationResult(operation, entry, f"{operation.capitalize()}d {entry.course.title}",
                               warning, error)

    def _settle(self, entry: ScheduleEntry, keys):
        """Put the confirmed entry in the view unless a newer remote write or a remote delete won"""
        with self._lock:
            self._in_flight.difference_update(keys)
            removed = entry.id in self._removed_remotely
            self._removed_remotely.discard(entry.id)
            same = [(k, e) for k, e in self._view.items() if e.id is not None and e.id == entry.id]
            newer = any(not e.pending and e.version > entry.version for _, e in same)
            if not newer and not (removed and not same):
                for key, _ in same:
                    del self._view[key]
                self._view[entry.key] = entry
            self._last_sync = utc_now()

    def _raise_store_failure(self, operation: str, error: Exception):
        if isinstance(error, ValidationError):
            raise error
        logger.error(f"❌ {operation} rolled back: {error}")
        raise PersistenceFailed(f"{operation} failed: {error}", cause=error) from error

    def _store_call(self, operation: str, local_id: Optional[str], func, *args, **kwargs):
        operation_id = self.sync_log.start(operation, self.tenant_id, local_id=local_id)
        started = time.monotonic()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self.sync_log.error(operation, operation_id, (time.monotonic() - started) * 1000, str(e),
                                tenant_id=self.tenant_id, local_id=local_id)
            raise
        self.sync_log.success(operation, operation_id, (time.monotonic() - started) * 1000,
                              tenant_id=self.tenant_id, local_id=getattr(result, 'id', None) or local_id)
        return result

    # ------------------------------------------------------------------
    # provider mirroring
    # ------------------------------------------------------------------

    def _provider_call(self, operation: str, func, *args, local_id: Optional[str] = None,
                       external_id: Optional[str] = None, request: Optional[Dict] = None,
                       **kwargs) -> ProviderResult:
        """Call the provider through the circuit breaker, retrying transient failures"""
        operation_id = self.sync_log.start(operation, self.tenant_id, local_id, external_id, _jsonable(request))
        started = time.monotonic()
        retry = RetryContext(max_retries=self.max_retries, base_delay=self.base_delay,
                             name=operation, sleep=self._sleep)

        def attempt():
            outcome = func(*args, **kwargs)
            if outcome.error is not None and outcome.error.retryable:
                raise outcome.error
            return outcome

        result = None
        try:
            while retry.should_retry():
                try:
                    result = self.breaker.call(attempt)
                    break
                except ProviderError as e:
                    retry.record_failure(e)
        except CircuitBreakerOpenError as e:
            result = ProviderResult(error=ProviderError(0, str(e)))
        except ProviderError as e:
            result = ProviderResult(error=e)

        duration_ms = (time.monotonic() - started) * 1000
        if result.ok:
            self._provider_ok = True
            created_id = result.data if isinstance(result.data, str) else None
            self.sync_log.success(operation, operation_id, duration_ms, self.tenant_id, local_id,
                                  external_id or created_id, response=_summarize(result.data))
        else:
            if result.error.retryable:
                self._provider_ok = False
            self.sync_log.error(operation, operation_id, duration_ms, result.error.message,
                                self.tenant_id, local_id, external_id)
            logger.warning(f"⚠️ Provider {operation} failed ({result.error.status}): {result.error.message}")
        return result

    def _mirror_create(self, entry: ScheduleEntry, user: Optional[str]):
        """Create the external booking; returns (entry, warning, provider_error)"""
        if self.breaker.is_open:
            error = ProviderError(0, "External provider circuit is open")
            self.sync_log.error('external_create', str(uuid.uuid4()), 0, error.message,
                                self.tenant_id, entry.id)
            self._emit(EngineEvent(PROVIDER_DEGRADED, entry.key, entry, operation='create',
                                   message=error.message))
            return entry, PENDING_SYNC_WARNING, error

        event_type_id = entry.event_type_id or self.event_types.resolve(entry.course, entry.room)
        if not event_type_id:
            logger.debug(f"Entry {entry.id} has no event type; not mirrored")
            return entry, None, None

        request = mapping.booking_request(entry.with_changes(event_type_id=event_type_id), self.grid)
        result = self._provider_call('external_create', self.provider.create_booking, local_id=entry.id,
                                     request=request, **request)
        if not result.ok:
            self._emit(EngineEvent(PROVIDER_DEGRADED, entry.key, entry, operation='create',
                                   message=result.error.message))
            return entry, PENDING_SYNC_WARNING, result.error

        stamp = {'external_id': result.data, 'event_type_id': event_type_id, 'provenance': Provenance.HYBRID}
        try:
            entry = self._store_call('link_external', entry.id, self.store.update, self.tenant_id, entry.id,
                                     stamp, user_id=user, origin=self.session_id)
        except Exception as e:
            # The booking carries localId, so reconcile links it back to this entry
            logger.error(f"❌ Booking {result.data} created but not recorded on {entry.id}: {e}")
            return entry, PENDING_SYNC_WARNING, None
        return entry, None, None

    def _restamp_provenance(self, entry: ScheduleEntry, provenance: Provenance,
                            user: Optional[str]) -> ScheduleEntry:
        if entry.provenance == provenance:
            return entry
        try:
            return self._store_call('mark_provenance', entry.id, self.store.update, self.tenant_id,
                                    entry.id, {'provenance': provenance}, user_id=user,
                                    origin=self.session_id)
        except Exception as e:
            logger.error(f"❌ Could not mark {entry.id} as {provenance.value}: {e}")
            return entry

    def _mirror_update(self, operation: str, entry: ScheduleEntry) -> Optional[ProviderError]:
        if self.breaker.is_open:
            error = ProviderError(0, "External provider circuit is open")
            self.sync_log.error(f'external_{operation}', str(uuid.uuid4()), 0, error.message,
                                self.tenant_id, entry.id, entry.external_id)
        else:
            patch = mapping.booking_patch(entry, self.grid)
            result = self._provider_call(f'external_{operation}', self.provider.update_booking,
                                         entry.external_id, patch, local_id=entry.id,
                                         external_id=entry.external_id, request=patch)
            error = result.error
        if error is not None:
            self._emit(EngineEvent(PROVIDER_DEGRADED, entry.key, entry, operation=operation,
                                   message=error.message))
        return error

    # ------------------------------------------------------------------
    # remote changes
    # ------------------------------------------------------------------

    def _on_remote_upsert(self, change):
        if change.origin == self.session_id:
            return
        entry = change.entry
        notice = None
        with self._lock:
            if not self._started or entry.week_start != self._week_start:
                return
            same = [(k, e) for k, e in self._view.items() if entry.id is not None and e.id == entry.id]
            if any(not e.pending and e.version > entry.version for _, e in same):
                return
            current = self._view.get(entry.key)
            displaced = [e for _, e in same if e.pending]
            if current is not None and current.pending and current.id != entry.id:
                displaced.append(current)
            # A move leaves the entry's old key behind
            for key, _ in same:
                del self._view[key]
            if displaced:
                notice = (f"Slot {entry.key} was changed in another session; "
                          f"your pending change was discarded")
            self._view[entry.key] = entry
            self._last_sync = utc_now()

        self._emit(EngineEvent(REMOTE, entry.key, entry, change.previous, operation=change.kind.lower()))
        if notice:
            logger.warning(f"⚠️ {notice}")
            self._emit(EngineEvent(NOTICE, entry.key, entry, message=notice))
        self._emit_status()

    def _on_remote_delete(self, change):
        if change.origin == self.session_id:
            return
        removed = change.entry
        notice = None
        with self._lock:
            if not self._started or removed.week_start != self._week_start:
                return
            same = [(k, e) for k, e in self._view.items() if e.id is not None and e.id == removed.id]
            if not same:
                return
            for key, existing in same:
                del self._view[key]
                if existing.pending:
                    self._removed_remotely.add(removed.id)
                    notice = (f"Slot {removed.key} was removed in another session; "
                              f"your pending change was discarded")
            self._last_sync = utc_now()

        self._emit(EngineEvent(REMOTE, removed.key, previous=removed, operation='delete'))
        if notice:
            logger.warning(f"⚠️ {notice}")
            self._emit(EngineEvent(NOTICE, removed.key, message=notice))
        self._emit_status()
