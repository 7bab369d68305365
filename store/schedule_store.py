# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Internal Schedule Store - durable CRUD for schedule entries scoped by (tenant, week)

Concurrency: writes on the same slot are last-writer-wins. An `expected_version`
that no longer matches is logged and the write still goes through; every write
bumps `version`.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from threading import RLock
from typing import Dict, List, Optional

import pytz
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import EntryNotFound, SlotConflict, SlotOccupied, StoreUnavailable
from models import (
    CourseRef, EntryData, InstructorRef, Provenance, ScheduleEntry, SyncLogRecord, slot_key
)
from store.database import create_db_engine, create_session_factory, create_tables
from store.subscriptions import (
    DELETE, INSERT, UPDATE, ChangeEvent, ScheduleCallbacks, Subscription, SubscriptionHub
)
from store.tables import CourseRow, InstructorRow, ScheduleRow, SyncLogRow
from utils.timezone import utc_now

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    'course', 'instructor', 'room', 'notes', 'duration', 'day_index', 'time_slot_index',
    'external_id', 'event_type_id', 'provenance',
}


def _as_date(value) -> date:
    return value.date() if isinstance(value, datetime) else value


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value


class ScheduleStore:
    """SQLAlchemy-backed schedule table with push notifications"""

    def __init__(self, engine=None, hub: Optional[SubscriptionHub] = None,
                 database_url: Optional[str] = None, create: bool = True):
        self.engine = engine or create_db_engine(database_url)
        self._session_factory = create_session_factory(self.engine)
        self.hub = hub or SubscriptionHub()
        self._lock = RLock()
        if create:
            create_tables(self.engine)

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def session(self):
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def _guard(self, action: str):
        """Translate driver errors into the store's error vocabulary"""
        try:
            yield
        except IntegrityError as e:
            logger.warning(f"Integrity error during {action}: {e.orig}")
            raise SlotConflict(f"{action} rejected: slot already taken") from e
        except SQLAlchemyError as e:
            logger.error(f"❌ Store unavailable during {action}: {e}")
            raise StoreUnavailable(f"{action} failed: {e.__class__.__name__}") from e

    def _to_entry(self, session, row: ScheduleRow) -> ScheduleEntry:
        course = session.get(CourseRow, row.course_id) if row.course_id else None
        instructor = session.get(InstructorRow, row.instructor_id) if row.instructor_id else None
        if course is not None and course.tenant_id != row.tenant_id:
            course = None
        if instructor is not None and instructor.tenant_id != row.tenant_id:
            instructor = None

        return ScheduleEntry(
            id=row.id,
            tenant_id=row.tenant_id,
            week_start=row.week_start_date,
            day_index=row.day_of_week,
            time_slot_index=row.time_slot_index,
            course=CourseRef(
                id=row.course_id,
                title=course.name if course else row.course_title,
                color=(course.color if course else row.course_color) or "bg-blue-500",
                duration=course.duration_minutes if course else row.course_duration,
            ),
            instructor=InstructorRef(
                id=row.instructor_id,
                name=instructor.name if instructor else row.instructor_name,
                email=instructor.email if instructor else row.instructor_email,
                color=instructor.color if instructor else row.instructor_color,
            ),
            room=row.room,
            notes=row.notes,
            duration=row.duration or 1,
            external_id=row.external_id,
            event_type_id=row.event_type_id,
            provenance=Provenance(row.provenance or "internal"),
            version=row.version or 0,
            created_by=row.created_by,
            updated_by=row.updated_by,
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
        )

    def _day_rows(self, session, tenant_id: str, week_start: date, day_index: int) -> List[ScheduleRow]:
        stmt = select(ScheduleRow).where(
            ScheduleRow.tenant_id == tenant_id,
            ScheduleRow.week_start_date == week_start,
            ScheduleRow.day_of_week == day_index,
        )
        return list(session.scalars(stmt))

    @staticmethod
    def _check_overlap(rows: List[ScheduleRow], day_index: int, start_index: int,
                       duration: int, exclude_id: Optional[str] = None):
        end_index = start_index + duration - 1
        for row in rows:
            if row.id == exclude_id:
                continue
            row_end = row.time_slot_index + (row.duration or 1) - 1
            if start_index <= row_end and row.time_slot_index <= end_index:
                raise SlotConflict(
                    f"slot {slot_key(day_index, start_index)} (+{duration}) overlaps entry "
                    f"{row.id} spanning {row.time_slot_index}-{row_end}",
                    entry_id=row.id,
                )

    @staticmethod
    def _apply_data(row: ScheduleRow, data: EntryData):
        row.course_id = data.course.id
        row.course_title = data.course.title
        row.course_color = data.course.color
        row.course_duration = data.course.duration
        row.instructor_id = data.instructor.id
        row.instructor_name = data.instructor.name
        row.instructor_email = data.instructor.email
        row.instructor_color = data.instructor.color
        row.room = data.room or "TBD"
        row.notes = data.notes
        row.duration = data.duration
        row.event_type_id = data.event_type_id
        row.external_id = data.external_id
        row.provenance = data.provenance.value

    @staticmethod
    def _stamp(row: ScheduleRow, user_id: Optional[str], now: datetime, created: bool = False):
        if created:
            row.created_at = now
            if user_id:
                row.created_by = user_id
        row.updated_at = now
        if user_id:
            row.updated_by = user_id

    def _publish(self, tenant_id: str, week_start: date, event: ChangeEvent):
        self.hub.publish(tenant_id, week_start, event)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def load_week(self, tenant_id: str, week_start) -> Dict[str, ScheduleEntry]:
        """All entries for the week keyed by "day-slot" """
        week_start = _as_date(week_start)
        with self._lock, self._guard('load_week'):
            with self.session() as session:
                stmt = select(ScheduleRow).where(
                    ScheduleRow.tenant_id == tenant_id,
                    ScheduleRow.week_start_date == week_start,
                ).order_by(ScheduleRow.day_of_week, ScheduleRow.time_slot_index)
                entries = [self._to_entry(session, row) for row in session.scalars(stmt)]

        logger.debug(f"📅 Loaded {len(entries)} entries for {tenant_id} week {week_start}")
        return {entry.key: entry for entry in entries}

    def get(self, tenant_id: str, entry_id: str) -> Optional[ScheduleEntry]:
        with self._lock, self._guard('get'):
            with self.session() as session:
                row = session.get(ScheduleRow, entry_id)
                if row is None or row.tenant_id != tenant_id:
                    return None
                return self._to_entry(session, row)

    def find_by_external_id(self, tenant_id: str, external_id: str) -> Optional[ScheduleEntry]:
        with self._lock, self._guard('find_by_external_id'):
            with self.session() as session:
                stmt = select(ScheduleRow).where(
                    ScheduleRow.tenant_id == tenant_id,
                    ScheduleRow.external_id == str(external_id),
                )
                row = session.scalars(stmt).first()
                return self._to_entry(session, row) if row else None

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    def upsert(self, tenant_id: str, week_start, day_index: int, time_slot_index: int,
               data: EntryData, user_id: Optional[str] = None,
               expected_version: Optional[int] = None, origin: Optional[str] = None,
               insert_only: bool = False) -> ScheduleEntry:
        """
        Insert at the slot, or update the entry already starting there

        Raises SlotConflict if a different entry's span covers any slot of the new span,
        and SlotOccupied if insert_only is set and an entry already starts there.
        """
        week_start = _as_date(week_start)
        with self._lock, self._guard('upsert'):
            with self.session() as session:
                rows = self._day_rows(session, tenant_id, week_start, day_index)
                existing = next((r for r in rows if r.time_slot_index == time_slot_index), None)
                if existing is not None and insert_only:
                    raise SlotOccupied(f"slot {day_index}-{time_slot_index} is already occupied",
                                       entry_id=existing.id)
                self._check_overlap(rows, day_index, time_slot_index, data.duration,
                                    exclude_id=existing.id if existing else None)
                now = utc_now()

                if existing is not None:
                    previous = self._to_entry(session, existing)
                    if expected_version is not None and existing.version != expected_version:
                        logger.warning(
                            f"Version mismatch on {existing.id}: expected {expected_version}, "
                            f"found {existing.version} - last writer wins"
                        )
                    self._apply_data(existing, data)
                    existing.version = (existing.version or 0) + 1
                    self._stamp(existing, user_id, now)
                    row, kind = existing, UPDATE
                else:
                    previous = None
                    row = ScheduleRow(
                        id=str(uuid.uuid4()),
                        tenant_id=tenant_id,
                        week_start_date=week_start,
                        day_of_week=day_index,
                        time_slot_index=time_slot_index,
                        version=1,
                    )
                    self._apply_data(row, data)
                    self._stamp(row, user_id, now, created=True)
                    session.add(row)
                    kind = INSERT

                session.flush()
                entry = self._to_entry(session, row)

        logger.info(f"💾 {kind.lower()} schedule {entry.id} at {entry.key} ({tenant_id} {week_start})")
        self._publish(tenant_id, week_start, ChangeEvent(kind, entry, previous, origin))
        return entry

    def update(self, tenant_id: str, entry_id: str, changes: Dict, user_id: Optional[str] = None,
               expected_version: Optional[int] = None, origin: Optional[str] = None) -> ScheduleEntry:
        """Patch an entry by id; moving or resizing re-checks span exclusivity"""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported fields: {sorted(unknown)}")

        with self._lock, self._guard('update'):
            with self.session() as session:
                row = session.get(ScheduleRow, entry_id)
                if row is None or row.tenant_id != tenant_id:
                    raise EntryNotFound(f"entry {entry_id} not found", entry_id=entry_id)
                previous = self._to_entry(session, row)

                day_index = changes.get('day_index', row.day_of_week)
                start_index = changes.get('time_slot_index', row.time_slot_index)
                duration = changes.get('duration', row.duration or 1)
                if (day_index, start_index, duration) != (row.day_of_week, row.time_slot_index, row.duration):
                    rows = self._day_rows(session, tenant_id, row.week_start_date, day_index)
                    self._check_overlap(rows, day_index, start_index, duration, exclude_id=row.id)

                if expected_version is not None and row.version != expected_version:
                    logger.warning(
                        f"Version mismatch on {row.id}: expected {expected_version}, "
                        f"found {row.version} - last writer wins"
                    )

                data = EntryData.from_entry(previous)
                merged = EntryData(
                    course=changes.get('course', data.course),
                    instructor=changes.get('instructor', data.instructor),
                    room=changes.get('room', data.room),
                    notes=changes.get('notes', data.notes),
                    duration=duration,
                    event_type_id=changes.get('event_type_id', data.event_type_id),
                    external_id=changes.get('external_id', data.external_id),
                    provenance=changes.get('provenance', data.provenance),
                )
                self._apply_data(row, merged)
                row.day_of_week = day_index
                row.time_slot_index = start_index
                row.version = (row.version or 0) + 1
                self._stamp(row, user_id, utc_now())
                session.flush()
                entry = self._to_entry(session, row)
                week_start = row.week_start_date

        self._publish(tenant_id, week_start, ChangeEvent(UPDATE, entry, previous, origin))
        return entry

    def remove(self, tenant_id: str, week_start, day_index: int, time_slot_index: int,
               origin: Optional[str] = None) -> Optional[ScheduleEntry]:
        """Delete the entry starting at this exact slot; no-op if the slot is empty"""
        week_start = _as_date(week_start)
        with self._lock, self._guard('remove'):
            with self.session() as session:
                stmt = select(ScheduleRow).where(
                    ScheduleRow.tenant_id == tenant_id,
                    ScheduleRow.week_start_date == week_start,
                    ScheduleRow.day_of_week == day_index,
                    ScheduleRow.time_slot_index == time_slot_index,
                )
                row = session.scalars(stmt).first()
                if row is None:
                    logger.debug(f"Nothing to remove at {slot_key(day_index, time_slot_index)}")
                    return None
                removed = self._to_entry(session, row)
                session.delete(row)

        logger.info(f"🗑️ Removed schedule {removed.id} at {removed.key} ({tenant_id} {week_start})")
        self._publish(tenant_id, week_start, ChangeEvent(DELETE, removed, removed, origin))
        return removed

    # ------------------------------------------------------------------
    # subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, tenant_id: str, week_start, callbacks: ScheduleCallbacks,
                  subscriber: str = "default") -> Subscription:
        return self.hub.subscribe(tenant_id, _as_date(week_start), callbacks, subscriber)

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self.hub.unsubscribe(subscription)

    # ------------------------------------------------------------------
    # sync log persistence
    # ------------------------------------------------------------------

    def append_sync_log(self, record: SyncLogRecord):
        with self._lock, self._guard('append_sync_log'):
            with self.session() as session:
                session.add(SyncLogRow(
                    operation_id=record.operation_id,
                    operation=record.operation,
                    status=record.status.value,
                    tenant_id=record.tenant_id,
                    local_id=record.local_id,
                    external_id=record.external_id,
                    request_data=record.request,
                    response_data=record.response,
                    error_message=record.error,
                    duration_ms=record.duration_ms,
                    created_at=record.timestamp,
                ))

    def list_sync_logs(self, tenant_id: Optional[str] = None, limit: int = 100) -> List[Dict]:
        with self._lock, self._guard('list_sync_logs'):
            with self.session() as session:
                stmt = select(SyncLogRow).order_by(SyncLogRow.id.desc()).limit(limit)
                if tenant_id:
                    stmt = stmt.where(SyncLogRow.tenant_id == tenant_id)
                return [
                    {
                        'operation_id': row.operation_id,
                        'operation': row.operation,
                        'status': row.status,
                        'tenant_id': row.tenant_id,
                        'local_id': row.local_id,
                        'external_id': row.external_id,
                        'error': row.error_message,
                        'duration_ms': row.duration_ms,
                        'timestamp': _aware(row.created_at).isoformat(),
                    }
                    for row in session.scalars(stmt)
                ]

    def close(self):
        self.hub.unsubscribe_all()
        self.engine.dispose()
