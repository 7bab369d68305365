from sync.engine import SyncEngine
from sync.events import (
    Conflict, EngineEvent, EngineStatus, OperationResult, PendingOperation, PENDING_SYNC_WARNING
)
from sync.reconciler import ReconcileReport, Reconciler
from sync.scheduler import ReconcileScheduler
from sync.service import ScheduleService
from sync.sync_log import SyncLog

__all__ = [
    'SyncEngine', 'ScheduleService', 'Reconciler', 'ReconcileReport', 'ReconcileScheduler',
    'SyncLog', 'Conflict', 'EngineEvent', 'EngineStatus', 'OperationResult', 'PendingOperation',
    'PENDING_SYNC_WARNING',
]
