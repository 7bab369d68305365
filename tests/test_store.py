"""
Internal store tests - slot exclusivity, versioning, change feed and catalog snapshots
"""
from datetime import date

import pytest

from conftest import TENANT, WEEK, course_data
from errors import EntryNotFound, SlotConflict, SlotOccupied
from models import CourseRef, EntryData, Provenance
from store import DELETE, INSERT, UPDATE, ChangeEvent, ScheduleCallbacks, SubscriptionHub


def data(**overrides):
    return EntryData.from_dict(course_data(**overrides))


class TestScheduleStore:

    @pytest.mark.store
    def test_upsert_inserts_then_updates_same_slot(self, store):
        first = store.upsert(TENANT, WEEK, 0, 0, data(), user_id='u-1')
        assert first.version == 1
        assert first.created_by == 'u-1'

        second = store.upsert(TENANT, WEEK, 0, 0, data(title='Geometry'), user_id='u-2')
        assert second.id == first.id
        assert second.version == 2
        assert second.course.title == 'Geometry'
        assert second.created_by == 'u-1'
        assert second.updated_by == 'u-2'

    @pytest.mark.store
    def test_insert_only_refuses_taken_slot(self, store):
        first = store.upsert(TENANT, WEEK, 0, 0, data(title='Remote B'))
        with pytest.raises(SlotOccupied):
            store.upsert(TENANT, WEEK, 0, 0, data(title='Local A'), insert_only=True)

        kept = store.get(TENANT, first.id)
        assert kept.course.title == 'Remote B'
        assert kept.version == 1

    @pytest.mark.store
    def test_upsert_without_user_leaves_audit_blank(self, store):
        entry = store.upsert(TENANT, WEEK, 0, 0, data())
        assert entry.created_by is None
        assert entry.updated_by is None
        assert entry.created_at is not None

    @pytest.mark.store
    def test_overlapping_span_rejected(self, store):
        store.upsert(TENANT, WEEK, 2, 1, data(duration=2))
        with pytest.raises(SlotConflict):
            store.upsert(TENANT, WEEK, 2, 2, data())
        with pytest.raises(SlotConflict):
            store.upsert(TENANT, WEEK, 2, 0, data(duration=2))
        # Adjacent slots and other days are free
        store.upsert(TENANT, WEEK, 2, 3, data())
        store.upsert(TENANT, WEEK, 3, 2, data())

    @pytest.mark.store
    def test_stale_version_last_writer_wins(self, store):
        entry = store.upsert(TENANT, WEEK, 0, 0, data())
        store.update(TENANT, entry.id, {'room': 'R2'})
        stale = store.update(TENANT, entry.id, {'room': 'R3'}, expected_version=entry.version)
        assert stale.room == 'R3'
        assert stale.version == 3

    @pytest.mark.store
    def test_update_move_checks_overlap(self, store):
        a = store.upsert(TENANT, WEEK, 0, 0, data())
        store.upsert(TENANT, WEEK, 0, 2, data())
        with pytest.raises(SlotConflict):
            store.update(TENANT, a.id, {'duration': 3})
        moved = store.update(TENANT, a.id, {'day_index': 1, 'time_slot_index': 4})
        assert moved.key == '1-4'
        assert set(store.load_week(TENANT, WEEK)) == {'1-4', '0-2'}

    @pytest.mark.store
    def test_update_missing_entry(self, store):
        with pytest.raises(EntryNotFound):
            store.update(TENANT, 'nope', {'room': 'R1'})

    @pytest.mark.store
    def test_remove_empty_slot_is_noop(self, store):
        assert store.remove(TENANT, WEEK, 4, 4) is None

    @pytest.mark.store
    def test_scoped_by_tenant_and_week(self, store):
        store.upsert(TENANT, WEEK, 0, 0, data())
        store.upsert('other', WEEK, 0, 0, data())
        store.upsert(TENANT, date(2025, 2, 3), 0, 0, data())
        assert len(store.load_week(TENANT, WEEK)) == 1

    @pytest.mark.store
    def test_find_by_external_id(self, store):
        entry = store.upsert(TENANT, WEEK, 0, 0, data())
        store.update(TENANT, entry.id, {'external_id': '1001', 'provenance': Provenance.HYBRID})
        found = store.find_by_external_id(TENANT, '1001')
        assert found.id == entry.id
        assert found.provenance == Provenance.HYBRID
        assert store.find_by_external_id('other', '1001') is None


class TestChangeFeed:

    @pytest.mark.store
    def test_events_carry_origin(self, store):
        events = []
        callbacks = ScheduleCallbacks(on_insert=events.append, on_update=events.append,
                                      on_delete=events.append)
        store.subscribe(TENANT, WEEK, callbacks, subscriber='tab-1')

        entry = store.upsert(TENANT, WEEK, 0, 0, data(), origin='session-a')
        store.update(TENANT, entry.id, {'notes': 'bring calculators'}, origin='session-b')
        store.remove(TENANT, WEEK, 0, 0)

        assert [e.kind for e in events] == [INSERT, UPDATE, DELETE]
        assert [e.origin for e in events] == ['session-a', 'session-b', None]
        assert events[1].previous.notes is None

    @pytest.mark.store
    def test_resubscribe_replaces_channel(self, store):
        first, second = [], []
        old = store.subscribe(TENANT, WEEK, ScheduleCallbacks(on_insert=first.append), subscriber='tab-1')
        store.subscribe(TENANT, WEEK, ScheduleCallbacks(on_insert=second.append), subscriber='tab-1')

        store.upsert(TENANT, WEEK, 0, 0, data())
        assert first == []
        assert len(second) == 1
        # The replaced handle no longer owns the channel
        assert store.unsubscribe(old) is False
        assert store.hub.channel_count() == 1

    @pytest.mark.store
    def test_other_weeks_not_delivered(self, store):
        events = []
        store.subscribe(TENANT, WEEK, ScheduleCallbacks(on_insert=events.append))
        store.upsert(TENANT, date(2025, 2, 3), 0, 0, data())
        assert events == []

    @pytest.mark.store
    def test_failing_listener_does_not_block_others(self):
        hub = SubscriptionHub()
        received = []

        def broken(event):
            raise RuntimeError('boom')

        hub.subscribe(TENANT, WEEK, ScheduleCallbacks(on_insert=broken), subscriber='a')
        hub.subscribe(TENANT, WEEK, ScheduleCallbacks(on_insert=received.append), subscriber='b')
        hub.publish(TENANT, WEEK, ChangeEvent(INSERT, None))
        assert len(received) == 1


class TestCatalog:

    @pytest.mark.store
    def test_entry_follows_catalog_until_deleted(self, store, catalog):
        course = catalog.create_course(TENANT, 'Chemistry', color='bg-red-500')
        entry_data = EntryData(course=CourseRef(id=course.id, title='Chem (old)'))
        entry = store.upsert(TENANT, WEEK, 1, 1, entry_data)
        assert store.get(TENANT, entry.id).course.title == 'Chemistry'

        catalog.update_course(TENANT, course.id, {'name': 'Chemistry II'})
        assert store.get(TENANT, entry.id).course.title == 'Chemistry II'

        assert catalog.delete_course(TENANT, course.id) is True
        detached = store.get(TENANT, entry.id)
        assert detached.course.id is None
        assert detached.course.title == 'Chemistry II'
        assert detached.course.color == 'bg-red-500'

    @pytest.mark.store
    def test_instructor_delete_keeps_name(self, store, catalog):
        instructor = catalog.create_instructor(TENANT, 'Mr. Reyes', email='reyes@example.org')
        entry = store.upsert(TENANT, WEEK, 0, 0, EntryData.from_dict(
            {'instructor': {'id': instructor.id, 'name': 'Reyes'}}))
        catalog.delete_instructor(TENANT, instructor.id)
        detached = store.get(TENANT, entry.id)
        assert detached.instructor.id is None
        assert detached.instructor.name == 'Mr. Reyes'
        assert detached.instructor.email == 'reyes@example.org'

    @pytest.mark.store
    def test_catalog_is_tenant_scoped(self, catalog):
        course = catalog.create_course(TENANT, 'Biology')
        assert catalog.get_course('other', course.id) is None
        assert catalog.delete_course('other', course.id) is False
        assert [c.name for c in catalog.list_courses(TENANT)] == ['Biology']
        with pytest.raises(EntryNotFound):
            catalog.update_course('other', course.id, {'name': 'x'})


class TestSyncLogPersistence:

    @pytest.mark.store
    def test_records_round_trip(self, store):
        from sync import SyncLog

        log = SyncLog(10, persist=store.append_sync_log)
        op = log.start('internal_create', TENANT, request={'slot': '0-0'})
        log.success('internal_create', op, 12.5, TENANT, local_id='e-1')

        rows = store.list_sync_logs(TENANT)
        assert [r['status'] for r in rows] == ['success', 'start']
        assert rows[0]['operation_id'] == op
        assert rows[0]['local_id'] == 'e-1'
