"""
Sync log tests - bounded history, statistics and non-fatal persistence
"""
import pytest

from errors import StoreUnavailable
from models import SyncStatus
from sync import SyncLog


class TestSyncLog:

    @pytest.mark.utils
    def test_start_and_finish_share_operation_id(self):
        log = SyncLog()
        op = log.start('external_create', 'login', local_id='e-1')
        log.success('external_create', op, 10, 'login', 'e-1', '1001')

        records = log.for_operation(op)
        assert [r.status for r in records] == [SyncStatus.START, SyncStatus.SUCCESS]
        assert records[1].external_id == '1001'

    @pytest.mark.utils
    def test_bounded(self):
        log = SyncLog(max_entries=3)
        for i in range(5):
            log.start(f'op-{i}')
        assert [r.operation for r in log.records] == ['op-2', 'op-3', 'op-4']

    @pytest.mark.utils
    def test_recent_is_newest_first_and_tenant_filtered(self):
        log = SyncLog()
        log.start('a', 'login')
        log.start('b', 'other')
        log.start('c', 'login')
        assert [r.operation for r in log.recent(tenant_id='login')] == ['c', 'a']
        assert len(log.recent(limit=1)) == 1

    @pytest.mark.utils
    def test_statistics(self):
        log = SyncLog()
        for duration in (10, 20, 30):
            op = log.start('internal_create')
            log.success('internal_create', op, duration)
        op = log.start('external_create')
        log.error('external_create', op, 40, 'Provider error (503)')

        stats = log.get_statistics()
        assert stats['total_operations'] == 4
        assert stats['successful_operations'] == 3
        assert stats['failed_operations'] == 1
        assert stats['success_rate'] == 75
        assert stats['average_duration_ms'] == 25
        assert stats['duration_percentiles']['p50'] == 25
        assert stats['by_operation']['external_create'] == {'success': 0, 'error': 1}
        assert log.get_recent_failures()[0]['error'] == 'Provider error (503)'

    @pytest.mark.utils
    def test_empty_statistics(self):
        stats = SyncLog().get_statistics()
        assert stats['total_operations'] == 0
        assert stats['last_operation'] is None

    @pytest.mark.utils
    def test_persist_failure_is_not_fatal(self):
        def persist(record):
            raise StoreUnavailable('database down')

        log = SyncLog(persist=persist)
        op = log.start('reconcile', 'login')
        assert log.for_operation(op)
