# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Sync Log - append-only record of every synchronization step, with statistics
"""
import logging
import statistics
import uuid
from collections import defaultdict
from datetime import timedelta
from threading import Lock
from typing import Callable, Dict, List, Optional

from errors import ScheduleError
from models import SyncLogRecord, SyncStatus
from utils.logger import StructuredLogger
from utils.timezone import utc_now

logger = logging.getLogger(__name__)
structured_logger = StructuredLogger(__name__)


class SyncLog:
    """
    Bounded in-memory log of SyncLogRecords

    With a `persist` callable (ScheduleStore.append_sync_log) every record is also
    written durably. A failed durable write is logged and never fails the
    operation being recorded.
    """

    def __init__(self, max_entries: int = 1000, persist: Optional[Callable[[SyncLogRecord], None]] = None):
        self.records: List[SyncLogRecord] = []
        self.max_entries = max_entries
        self._persist = persist
        self._lock = Lock()

    def append(self, record: SyncLogRecord) -> SyncLogRecord:
        with self._lock:
            self.records.append(record)
            if len(self.records) > self.max_entries:
                self.records.pop(0)

        structured_logger.log_sync_event(
            f"sync_operation_{record.status.value}",
            {k: v for k, v in record.to_dict().items() if v is not None}
        )

        if self._persist is not None:
            try:
                self._persist(record)
            except ScheduleError as e:
                logger.warning(f"Could not persist sync log record {record.operation_id}: {e.message}")
        return record

    def start(self, operation: str, tenant_id: Optional[str] = None, local_id: Optional[str] = None,
              external_id: Optional[str] = None, request: Optional[Dict] = None) -> str:
        """Record the start of an operation; returns the operation id shared by its records"""
        operation_id = str(uuid.uuid4())
        self.append(SyncLogRecord(
            operation=operation, status=SyncStatus.START, operation_id=operation_id,
            timestamp=utc_now(), tenant_id=tenant_id, local_id=local_id,
            external_id=external_id, request=request,
        ))
        return operation_id

    def success(self, operation: str, operation_id: str, duration_ms: float, tenant_id: Optional[str] = None,
                local_id: Optional[str] = None, external_id: Optional[str] = None,
                response: Optional[Dict] = None) -> SyncLogRecord:
        return self.append(SyncLogRecord(
            operation=operation, status=SyncStatus.SUCCESS, operation_id=operation_id,
            timestamp=utc_now(), tenant_id=tenant_id, local_id=local_id,
            external_id=external_id, response=response, duration_ms=round(duration_ms, 2),
        ))

    def error(self, operation: str, operation_id: str, duration_ms: float, error: str,
              tenant_id: Optional[str] = None, local_id: Optional[str] = None,
              external_id: Optional[str] = None) -> SyncLogRecord:
        return self.append(SyncLogRecord(
            operation=operation, status=SyncStatus.ERROR, operation_id=operation_id,
            timestamp=utc_now(), tenant_id=tenant_id, local_id=local_id,
            external_id=external_id, error=error, duration_ms=round(duration_ms, 2),
        ))

    def recent(self, limit: int = 50, tenant_id: Optional[str] = None) -> List[SyncLogRecord]:
        with self._lock:
            records = list(self.records)
        if tenant_id:
            records = [r for r in records if r.tenant_id == tenant_id]
        return list(reversed(records))[:limit]

    def for_operation(self, operation_id: str) -> List[SyncLogRecord]:
        with self._lock:
            return [r for r in self.records if r.operation_id == operation_id]

    def get_statistics(self, hours: int = 24) -> Dict:
        """Outcome statistics over finished operations in the given period"""
        cutoff_time = utc_now() - timedelta(hours=hours)
        with self._lock:
            finished = [
                r for r in self.records
                if r.timestamp > cutoff_time and r.status != SyncStatus.START
            ]

        if not finished:
            return {
                'period_hours': hours,
                'total_operations': 0,
                'successful_operations': 0,
                'failed_operations': 0,
                'success_rate': 0,
                'average_duration_ms': 0,
                'duration_percentiles': {},
                'by_operation': {},
                'last_operation': None,
                'last_success': None,
            }

        successes = [r for r in finished if r.status == SyncStatus.SUCCESS]
        durations = [r.duration_ms for r in finished if r.duration_ms]

        by_operation = defaultdict(lambda: {'success': 0, 'error': 0})
        for record in finished:
            by_operation[record.operation][record.status.value] += 1

        duration_percentiles = {}
        if durations:
            duration_percentiles = {
                'p50': statistics.median(durations),
                'p90': self._percentile(durations, 90),
                'p95': self._percentile(durations, 95),
                'min': min(durations),
                'max': max(durations),
            }

        last_success = successes[-1] if successes else None
        return {
            'period_hours': hours,
            'total_operations': len(finished),
            'successful_operations': len(successes),
            'failed_operations': len(finished) - len(successes),
            'success_rate': len(successes) / len(finished) * 100,
            'average_duration_ms': statistics.mean(durations) if durations else 0,
            'duration_percentiles': duration_percentiles,
            'by_operation': dict(by_operation),
            'last_operation': finished[-1].timestamp.isoformat(),
            'last_success': last_success.timestamp.isoformat() if last_success else None,
        }

    def get_recent_failures(self, limit: int = 10) -> List[Dict]:
        with self._lock:
            failures = [r.to_dict() for r in reversed(self.records) if r.status == SyncStatus.ERROR]
        return failures[:limit]

    def clear(self):
        with self._lock:
            self.records.clear()

    def _percentile(self, data: List[float], percentile: int) -> float:
        """Calculate percentile of a list"""
        if not data:
            return 0

        sorted_data = sorted(data)
        index = (percentile / 100) * (len(sorted_data) - 1)

        if index.is_integer():
            return sorted_data[int(index)]
        lower = sorted_data[int(index)]
        upper = sorted_data[int(index) + 1]
        fraction = index - int(index)
        return lower + (upper - lower) * fraction
