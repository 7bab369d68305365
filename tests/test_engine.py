"""
Sync engine tests - optimistic writes, rollback, provider degradation and remote merges
"""
from datetime import date

import pytest

from conftest import TENANT, WEEK, course_data
from errors import (
    EntryNotFound, InvalidPlacement, NotAuthenticated, NotInitialized, PersistenceFailed,
    ProviderError, SlotConflict, SlotOccupied, StoreUnavailable, ValidationError
)
from models import EntryState, Provenance
from sync import PENDING_SYNC_WARNING
from sync.events import CONFIRMED, NOTICE, OPTIMISTIC, PROVIDER_DEGRADED, REMOTE, ROLLED_BACK
from utils.timezone import parse_iso


def record(engine):
    events = []
    engine.subscribe(events.append)
    return events


def kinds(events):
    return [e.kind for e in events]


class TestCreate:

    @pytest.mark.engine
    def test_create_is_optimistic_then_confirmed(self, engine, store, provider):
        events = record(engine)
        result = engine.create(0, 2, course_data(title='Intro to Programming'))

        assert kinds(events)[:2] == [OPTIMISTIC, CONFIRMED]
        assert events[0].entry.state == EntryState.PENDING_CREATE
        assert events[0].entry.id is None

        entry = result.entry
        assert result.success and result.warning is None
        assert entry.id is not None
        assert entry.state == EntryState.CONFIRMED
        assert entry.external_id == '1001'
        assert entry.provenance == Provenance.HYBRID
        assert engine.get(0, 2) == entry
        assert store.get(TENANT, entry.id).external_id == '1001'
        assert provider.bookings['1001']['metadata']['localId'] == entry.id

    @pytest.mark.engine
    def test_second_create_on_pending_slot_fails_fast(self, engine):
        pending = engine.begin_create(0, 2, course_data())
        assert engine.get(0, 2).pending

        with pytest.raises(SlotOccupied):
            engine.create(0, 2, course_data(title='Other'))

        result = engine.complete(pending)
        assert engine.get(0, 2) == result.entry
        assert result.entry.course.title == 'Algebra I'

    @pytest.mark.engine
    def test_listener_sees_pending_entry(self, engine):
        """A create issued from the optimistic notification observes the pending entry"""
        rejected = []

        def on_event(event):
            if event.kind == OPTIMISTIC and event.operation == 'create':
                try:
                    engine.create(event.entry.day_index, event.entry.time_slot_index, course_data())
                except SlotOccupied as e:
                    rejected.append(e)

        engine.subscribe(on_event)
        engine.create(0, 2, course_data())
        assert len(rejected) == 1
        assert len(engine.snapshot()) == 1

    @pytest.mark.engine
    def test_overlapping_span_rejected(self, engine):
        engine.create(2, 1, course_data(duration=2))
        with pytest.raises(SlotConflict):
            engine.create(2, 2, course_data())
        with pytest.raises(InvalidPlacement):
            engine.create(2, 6, course_data(duration=2))

    @pytest.mark.engine
    def test_store_failure_rolls_back(self, engine, store, monkeypatch):
        events = record(engine)

        def unavailable(*args, **kwargs):
            raise StoreUnavailable('connection refused')

        monkeypatch.setattr(store, 'upsert', unavailable)
        with pytest.raises(PersistenceFailed):
            engine.create(0, 0, course_data())

        assert not engine.has(0, 0)
        assert kinds(events) == [OPTIMISTIC, ROLLED_BACK]
        assert engine.status().total_entries == 0

        monkeypatch.undo()
        assert engine.create(0, 0, course_data()).entry.id

    @pytest.mark.engine
    def test_provider_rejection_degrades_not_discards(self, engine, provider, store):
        provider.fail_with['create_booking'] = ProviderError(400, 'Provider error (400): invalid event type')
        events = record(engine)

        result = engine.create(0, 0, course_data())

        assert result.success
        assert result.warning == PENDING_SYNC_WARNING
        assert result.provider_error.status == 400
        assert result.entry.provenance == Provenance.INTERNAL
        assert result.entry.external_id is None
        assert engine.get(0, 0).state == EntryState.CONFIRMED
        assert store.get(TENANT, result.entry.id) is not None
        assert PROVIDER_DEGRADED in kinds(events)
        # Non-retryable errors are not retried
        assert provider.calls.count('create_booking') == 1

    @pytest.mark.engine
    def test_transient_provider_failure_is_retried(self, engine, provider):
        provider.fail_with['create_booking'] = ProviderError(503, 'unavailable')
        result = engine.create(0, 0, course_data())

        assert provider.calls.count('create_booking') == 2
        assert result.warning == PENDING_SYNC_WARNING
        assert engine.status().provider_connected is False

        errors = [r for r in engine.sync_log.recent() if r.operation == 'external_create']
        assert errors[0].status.value == 'error'

    @pytest.mark.engine
    def test_open_circuit_skips_provider(self, engine, provider):
        provider.fail_with['create_booking'] = ProviderError(503, 'unavailable')
        engine.create(0, 0, course_data())
        engine.create(0, 1, course_data())
        assert engine.breaker.is_open

        calls = provider.calls.count('create_booking')
        result = engine.create(0, 2, course_data())
        assert provider.calls.count('create_booking') == calls
        assert result.warning == PENDING_SYNC_WARNING
        assert result.entry.id is not None

    @pytest.mark.engine
    def test_course_without_event_type_stays_internal(self, engine, provider):
        result = engine.create(0, 0, {'course': {'title': 'Study hall'}})
        assert result.warning is None
        assert result.entry.provenance == Provenance.INTERNAL
        assert 'create_booking' not in provider.calls


class TestUpdateResizeMove:

    @pytest.mark.engine
    def test_update_patches_store_and_booking(self, engine, provider):
        entry = engine.create(0, 0, course_data()).entry
        result = engine.update(entry.id, {'room': 'Lab 3', 'notes': 'bring goggles'})

        assert result.entry.room == 'Lab 3'
        assert result.entry.version == entry.version + 1
        booking = provider.bookings[entry.external_id]
        assert booking['location'] == 'Lab 3'
        assert booking['metadata']['notes'] == 'bring goggles'

    @pytest.mark.engine
    def test_update_rejects_placement_fields(self, engine):
        entry = engine.create(0, 0, course_data()).entry
        with pytest.raises(ValidationError):
            engine.update(entry.id, {'duration': 2})
        with pytest.raises(EntryNotFound):
            engine.update('missing', {'room': 'x'})

    @pytest.mark.engine
    def test_resize_round_trip(self, engine, store, provider, grid):
        entry = engine.create(0, 0, course_data()).entry
        result = engine.resize(entry.id, 3)

        assert result.entry.duration == 3
        assert store.get(TENANT, entry.id).duration == 3
        _, expected_end = grid.span_times(WEEK, 0, 0, 3)
        assert parse_iso(provider.bookings[entry.external_id]['endTime']) == expected_end
        assert engine.entry_at(0, 2).id == entry.id

    @pytest.mark.engine
    def test_resize_into_occupied_slot_rejected(self, engine, store):
        first = engine.create(2, 1, course_data()).entry
        engine.create(2, 2, course_data(title='Biology'))

        with pytest.raises(SlotConflict):
            engine.resize(first.id, 3)
        assert engine.get(2, 1).duration == 1
        assert engine.get(2, 1).state == EntryState.CONFIRMED
        assert store.get(TENANT, first.id).duration == 1

    @pytest.mark.engine
    def test_resize_to_same_duration_is_noop(self, engine):
        entry = engine.create(0, 0, course_data()).entry
        result = engine.resize(entry.id, 1)
        assert result.message == 'Duration unchanged'
        assert result.entry.version == entry.version

    @pytest.mark.engine
    def test_move(self, engine, store, provider, grid):
        entry = engine.create(0, 0, course_data(duration=2)).entry
        result = engine.move(entry.id, 3, 4)

        assert result.entry.key == '3-4'
        assert not engine.has(0, 0)
        assert engine.get(3, 4).duration == 2
        assert set(store.load_week(TENANT, WEEK)) == {'3-4'}
        start, _ = grid.span_times(WEEK, 3, 4, 2)
        assert parse_iso(provider.bookings[entry.external_id]['startTime']) == start

    @pytest.mark.engine
    def test_move_onto_entry_rejected(self, engine):
        entry = engine.create(0, 0, course_data()).entry
        engine.create(1, 1, course_data())
        with pytest.raises(SlotOccupied):
            engine.move(entry.id, 1, 1)
        assert engine.get(0, 0).id == entry.id

    @pytest.mark.engine
    def test_update_provider_failure_degrades_but_keeps_link(self, engine, store, provider):
        entry = engine.create(0, 0, course_data()).entry
        provider.fail_with['update_booking'] = ProviderError(422, 'rejected')
        result = engine.update(entry.id, {'room': 'Gym'})

        assert result.warning == PENDING_SYNC_WARNING
        assert result.entry.room == 'Gym'
        assert result.entry.external_id == entry.external_id
        assert result.entry.provenance == Provenance.INTERNAL
        assert engine.get(0, 0).provenance == Provenance.INTERNAL
        assert store.get(TENANT, entry.id).provenance == Provenance.INTERNAL

    @pytest.mark.engine
    def test_resize_provider_failure_degrades(self, engine, store, provider):
        entry = engine.create(1, 0, course_data()).entry
        provider.fail_with['update_booking'] = ProviderError(422, 'rejected')
        result = engine.resize(entry.id, 2)

        assert result.warning == PENDING_SYNC_WARNING
        assert result.entry.duration == 2
        assert result.entry.provenance == Provenance.INTERNAL
        stored = store.get(TENANT, entry.id)
        assert (stored.duration, stored.provenance) == (2, Provenance.INTERNAL)
        assert stored.external_id == entry.external_id

    @pytest.mark.engine
    def test_successful_update_relinks_degraded_entry(self, engine, store, provider):
        entry = engine.create(0, 0, course_data()).entry
        provider.fail_with['update_booking'] = ProviderError(422, 'rejected')
        engine.update(entry.id, {'room': 'Gym'})

        provider.fail_with.pop('update_booking')
        result = engine.update(entry.id, {'room': 'Lab'})

        assert result.warning is None
        assert result.entry.provenance == Provenance.HYBRID
        assert store.get(TENANT, entry.id).provenance == Provenance.HYBRID
        assert provider.bookings[entry.external_id]['location'] == 'Lab'


class TestDelete:

    @pytest.mark.engine
    def test_delete_removes_booking(self, engine, store, provider):
        engine.create(0, 0, course_data())
        result = engine.delete(0, 0)

        assert result.warning is None
        assert not engine.has(0, 0)
        assert store.load_week(TENANT, WEEK) == {}
        assert provider.bookings == {}

    @pytest.mark.engine
    def test_delete_with_provider_failure_is_not_a_failure(self, engine, store, provider):
        entry = engine.create(0, 2, course_data()).entry
        provider.fail_with['delete_booking'] = ProviderError(500, 'Provider error (500): boom')

        result = engine.delete(0, 2)

        assert result.success
        assert result.provider_error.status == 500
        assert not engine.has(0, 2)
        assert store.get(TENANT, entry.id) is None
        failures = engine.sync_log.get_recent_failures()
        assert failures[0]['operation'] == 'external_delete'

    @pytest.mark.engine
    def test_delete_already_gone_externally(self, engine, provider):
        entry = engine.create(0, 0, course_data()).entry
        del provider.bookings[entry.external_id]
        result = engine.delete(0, 0)
        assert result.warning is None

    @pytest.mark.engine
    def test_delete_empty_slot(self, engine):
        with pytest.raises(EntryNotFound):
            engine.delete(5, 5)

    @pytest.mark.engine
    def test_delete_store_failure_restores_entry(self, engine, store, monkeypatch):
        entry = engine.create(0, 0, course_data()).entry

        def unavailable(*args, **kwargs):
            raise StoreUnavailable('connection refused')

        monkeypatch.setattr(store, 'remove', unavailable)
        with pytest.raises(PersistenceFailed):
            engine.delete(0, 0)
        assert engine.get(0, 0) == entry


class TestLifecycleAndIdentity:

    @pytest.mark.engine
    def test_commands_before_start(self, make_engine):
        engine = make_engine()
        with pytest.raises(NotInitialized):
            engine.create(0, 0, course_data())
        with pytest.raises(NotInitialized):
            engine.reconcile()

    @pytest.mark.engine
    def test_identity_required_outside_dev_mode(self, make_engine):
        engine = make_engine(dev_mode=False).start(WEEK)
        with pytest.raises(NotAuthenticated):
            engine.create(0, 0, course_data())

    @pytest.mark.engine
    def test_audit_stamps(self, make_engine):
        engine = make_engine(dev_mode=False, current_user=lambda: 'u-7').start(WEEK)
        entry = engine.create(0, 0, course_data()).entry
        assert entry.created_by == 'u-7'
        assert entry.updated_by == 'u-7'

    @pytest.mark.engine
    def test_dev_mode_omits_audit_stamps(self, engine):
        entry = engine.create(0, 0, course_data()).entry
        assert entry.created_by is None

    @pytest.mark.engine
    def test_start_loads_week_and_switches(self, engine, store, make_engine):
        engine.create(0, 0, course_data())
        reloaded = make_engine().start(WEEK)
        assert set(reloaded.snapshot()) == {'0-0'}

        reloaded.start(date(2025, 2, 5))
        assert reloaded.week_start == date(2025, 2, 3)
        assert reloaded.snapshot() == {}

    @pytest.mark.engine
    def test_status_stream(self, engine):
        statuses = []
        unsubscribe = engine.subscribe_status(statuses.append)
        engine.create(0, 0, course_data())
        assert statuses[-1].total_entries == 1
        assert statuses[-1].provider_connected is True
        assert statuses[-1].to_dict()['weekStart'] == '2025-01-27'

        unsubscribe()
        count = len(statuses)
        engine.create(0, 1, course_data())
        assert len(statuses) == count

    @pytest.mark.engine
    def test_unreachable_provider_at_start(self, make_engine, provider):
        provider.fail_with['get_me'] = ProviderError(0, 'Network error')
        engine = make_engine().start(WEEK)
        assert engine.status().provider_connected is False


class TestRemoteChanges:

    @pytest.mark.engine
    def test_other_session_writes_are_merged(self, engine, make_engine):
        other = make_engine(session_id='other-session').start(WEEK)
        events = record(other)

        entry = engine.create(1, 1, course_data()).entry
        assert other.get(1, 1).id == entry.id
        assert other.get(1, 1).external_id == entry.external_id
        assert REMOTE in kinds(events)

        engine.move(entry.id, 4, 0)
        assert not other.has(1, 1)
        assert other.get(4, 0).id == entry.id

        engine.delete(4, 0)
        assert other.snapshot() == {}

    @pytest.mark.engine
    def test_own_writes_are_not_echoed(self, engine):
        events = record(engine)
        engine.create(0, 0, course_data())
        assert REMOTE not in kinds(events)

    @pytest.mark.engine
    def test_remote_write_beats_pending_change(self, engine, make_engine, store):
        other = make_engine(session_id='other-session').start(WEEK)
        entry = engine.create(0, 0, course_data()).entry
        events = record(engine)

        pending = engine.begin_update(entry.id, {'room': 'Mine'})
        other.update(entry.id, {'room': 'Theirs'})

        assert engine.get(0, 0).room == 'Theirs'
        assert not engine.get(0, 0).pending
        assert NOTICE in kinds(events)

        # The pending write still lands; the store decides the final state
        engine.complete(pending)
        stored = store.get(TENANT, entry.id)
        assert (engine.get(0, 0).room, engine.get(0, 0).version) == (stored.room, stored.version)
        assert other.get(0, 0).room == engine.get(0, 0).room

    @pytest.mark.engine
    def test_remote_insert_beats_pending_create(self, engine, make_engine, store, provider):
        other = make_engine(session_id='other-session').start(WEEK)
        events = record(engine)

        pending = engine.begin_create(0, 0, course_data(title='Local A'))
        theirs = other.create(0, 0, course_data(title='Remote B', course_id='c-2')).entry
        assert engine.get(0, 0).course.title == 'Remote B'
        assert NOTICE in kinds(events)

        with pytest.raises(SlotOccupied):
            engine.complete(pending)

        stored = store.load_week(TENANT, WEEK)['0-0']
        assert stored.id == theirs.id
        assert stored.course.title == 'Remote B'
        assert stored.external_id == theirs.external_id
        assert stored.provenance == Provenance.HYBRID
        assert engine.get(0, 0) == stored
        assert other.get(0, 0) == stored
        assert len(provider.bookings) == 1
        assert ROLLED_BACK in kinds(events)

    @pytest.mark.engine
    def test_remote_delete_beats_pending_change(self, engine, make_engine):
        other = make_engine(session_id='other-session').start(WEEK)
        entry = engine.create(0, 0, course_data()).entry
        events = record(engine)

        pending = engine.begin_update(entry.id, {'room': 'Mine'})
        other.delete(0, 0)
        assert not engine.has(0, 0)
        assert NOTICE in kinds(events)

        with pytest.raises(EntryNotFound):
            engine.complete(pending)
        assert not engine.has(0, 0)
