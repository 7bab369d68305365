# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Reconciliation - diff-and-merge pass between the Internal Store and the provider

Local entries are authoritative: a disagreement is flagged as a conflict and
never overwritten. Runs are exclusive per (tenant, week); a second request for
a busy scope is rejected instead of queued.
"""
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import date
from threading import Lock
from typing import Any, Dict, List

from errors import ReconcileInProgress, ScheduleError, SlotConflict
from models import Provenance, slot_key
from provider import mapping
from sync.events import Conflict
from utils.logger import StructuredLogger
from utils.timezone import utc_now

logger = logging.getLogger(__name__)
structured_logger = StructuredLogger(__name__)


@dataclass
class ReconcileReport:
    tenant_id: str
    week_start: date
    imported: int = 0
    conflicts: int = 0
    errors: int = 0
    cleaned: int = 0
    linked: int = 0
    skipped: int = 0
    missing_external: int = 0
    duration_ms: float = 0
    messages: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.errors == 0

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['week_start'] = self.week_start.isoformat()
        result['success'] = self.success
        return result


class Reconciler:
    """Runs reconcile passes; share one instance between engines to share the scope locks"""

    def __init__(self):
        self._active = set()
        self._lock = Lock()

    def is_running(self, tenant_id: str, week_start: date) -> bool:
        with self._lock:
            return (tenant_id, week_start) in self._active

    def run(self, engine, week_start: date) -> ReconcileReport:
        scope = (engine.tenant_id, week_start)
        with self._lock:
            if scope in self._active:
                raise ReconcileInProgress(f"reconcile already running for {engine.tenant_id} week {week_start}")
            self._active.add(scope)

        try:
            return self._run(engine, week_start)
        finally:
            with self._lock:
                self._active.discard(scope)

    def _run(self, engine, week_start: date) -> ReconcileReport:
        started = time.monotonic()
        report = ReconcileReport(engine.tenant_id, week_start)
        operation_id = engine.sync_log.start('reconcile', engine.tenant_id, request={'week_start': week_start.isoformat()})
        logger.info(f"🔄 Reconciling {engine.tenant_id} week {week_start}")

        range_start, range_end = engine.grid.week_range(week_start)
        listed = engine._provider_call('list_bookings', engine.provider.list_bookings, range_start, range_end)
        if not listed.ok:
            report.errors += 1
            report.messages.append(f"Could not list external bookings: {listed.error.message}")
            return self._finish(engine, report, operation_id, started)

        internal = engine.store.load_week(engine.tenant_id, week_start)
        by_external_id = {e.external_id: e for e in internal.values() if e.external_id}
        seen = set()
        user = engine._identity(required=False)

        for booking in listed.data:
            if not isinstance(booking, dict) or mapping.booking_id(booking) is None:
                report.errors += 1
                continue
            if mapping.is_cancelled(booking):
                continue
            tenant = mapping.booking_tenant(booking)
            if tenant and tenant != engine.tenant_id:
                continue
            if not tenant and not engine.import_untagged:
                report.skipped += 1
                continue

            booking_id = mapping.booking_id(booking)
            seen.add(booking_id)
            try:
                self._reconcile_booking(engine, report, booking, booking_id, week_start,
                                        internal, by_external_id, user)
            except ScheduleError as e:
                report.errors += 1
                report.messages.append(f"Booking {booking_id}: {e.message}")
                logger.error(f"❌ Reconcile failed for booking {booking_id}: {e.message}")

        for entry in internal.values():
            if entry.provenance == Provenance.HYBRID and entry.external_id and entry.external_id not in seen:
                report.missing_external += 1
                logger.warning(f"⚠️ Entry {entry.id} at {entry.key} references missing booking {entry.external_id}")

        return self._finish(engine, report, operation_id, started)

    def _reconcile_booking(self, engine, report, booking, booking_id, week_start, internal,
                           by_external_id, user):
        placement = mapping.booking_placement(booking, engine.grid, week_start)
        local = by_external_id.get(booking_id)
        if local is None and placement is not None:
            day_index, slot_index, _ = placement
            local = next((e for e in internal.values() if e.covers(day_index, slot_index)), None)

        if local is None:
            local_id = mapping.booking_local_id(booking)
            if local_id and mapping.booking_tenant(booking) == engine.tenant_id:
                self._clean_orphan(engine, report, booking_id, local_id)
                return
            if placement is None:
                report.skipped += 1
                logger.debug(f"Booking {booking_id} does not fit the grid; skipped")
                return
            self._import(engine, report, booking, booking_id, week_start, placement, internal, user)
            return

        if placement is None:
            # Matched by id but moved off-grid externally
            report.skipped += 1
            return

        external = mapping.booking_to_entry(booking, engine.tenant_id, week_start, placement)
        if not local.same_assignment(external):
            conflict = Conflict(
                key=local.key,
                entry_id=local.id,
                booking_id=booking_id,
                local_course=local.course.title,
                external_course=external.course.title,
                local_instructor=local.instructor.name,
                external_instructor=external.instructor.name,
                detected_at=utc_now(),
            )
            if engine.register_conflict(conflict):
                report.conflicts += 1
            return

        if not local.external_id:
            engine.store.update(
                engine.tenant_id, local.id,
                {'external_id': booking_id, 'provenance': Provenance.HYBRID,
                 'event_type_id': local.event_type_id or mapping.booking_to_entry_data(booking, 1).event_type_id},
                user_id=user, origin=engine.reconcile_origin,
            )
            by_external_id[booking_id] = local
            report.linked += 1
            logger.info(f"🔗 Linked booking {booking_id} to entry {local.id} at {local.key}")

    def _import(self, engine, report, booking, booking_id, week_start, placement, internal, user):
        day_index, slot_index, duration = placement
        data = mapping.booking_to_entry_data(booking, duration, Provenance.HYBRID)
        try:
            entry = engine.store.upsert(engine.tenant_id, week_start, day_index, slot_index, data,
                                        user_id=user, origin=engine.reconcile_origin)
        except SlotConflict as e:
            report.errors += 1
            report.messages.append(f"Booking {booking_id} overlaps an existing entry: {e.message}")
            return
        internal[entry.key] = entry
        report.imported += 1
        logger.info(f"📥 Imported booking {booking_id} as {entry.course.title} at {slot_key(day_index, slot_index)}")

    def _clean_orphan(self, engine, report, booking_id, local_id):
        result = engine._provider_call('external_delete_orphan', engine.provider.delete_booking, booking_id,
                                       reason='Schedule entry no longer exists', local_id=local_id,
                                       external_id=booking_id)
        if result.ok or result.error.status == 404:
            report.cleaned += 1
            logger.info(f"🧹 Removed orphaned booking {booking_id} (entry {local_id} is gone)")
        else:
            report.errors += 1
            report.messages.append(f"Could not remove orphaned booking {booking_id}: {result.error.message}")

    def _finish(self, engine, report, operation_id, started) -> ReconcileReport:
        report.duration_ms = round((time.monotonic() - started) * 1000, 2)
        summary = {k: v for k, v in report.to_dict().items() if k != 'messages'}
        if report.errors:
            engine.sync_log.error('reconcile', operation_id, report.duration_ms,
                                  '; '.join(report.messages) or f"{report.errors} errors", engine.tenant_id)
        else:
            engine.sync_log.success('reconcile', operation_id, report.duration_ms, engine.tenant_id,
                                    response=summary)
        structured_logger.log_performance('reconcile', report.duration_ms / 1000,
                                          item_count=report.imported + report.linked + report.cleaned,
                                          success=report.success)
        logger.info(f"✅ Reconcile {report.tenant_id} week {report.week_start}: "
                    f"imported={report.imported} conflicts={report.conflicts} errors={report.errors} "
                    f"cleaned={report.cleaned} missing_external={report.missing_external}")
        engine.mark_synced()
        return report
