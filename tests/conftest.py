"""
Shared fixtures: in-memory store, null provider, fixed grid and a started engine
"""
import os
import sys
from datetime import date

import pytest
import pytz

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from grid import TimeGrid, TimeSlot
from provider import EventTypeResolver, NullProviderClient
from store import CatalogStore, ScheduleStore
from sync import SyncEngine, SyncLog
from utils.circuit_breaker import CircuitBreaker
from errors import ProviderError

TENANT = 'login'
WEEK = date(2025, 1, 27)  # a Monday
ZONE = pytz.timezone('Asia/Bangkok')
SLOTS = ['08:00', '09:45', '11:30', '14:00', '15:45', '18:00', '19:45']


@pytest.fixture
def grid():
    return TimeGrid([TimeSlot.parse(start, 90) for start in SLOTS], zone=ZONE)


@pytest.fixture
def store():
    store = ScheduleStore(database_url='sqlite://')
    yield store
    store.close()


@pytest.fixture
def catalog(store):
    return CatalogStore(store)


@pytest.fixture
def provider():
    return NullProviderClient(attendee_timezone='Asia/Bangkok')


@pytest.fixture
def make_engine(store, provider, grid):
    """Factory for engines sharing the store; extra sessions simulate other users"""
    engines = []

    def factory(**overrides):
        options = dict(
            provider=provider,
            grid=grid,
            sync_log=SyncLog(100),
            event_types=EventTypeResolver(overrides.get('provider', provider), TENANT, auto_create=True),
            breaker=CircuitBreaker(failure_threshold=3, recovery_timeout=60,
                                   expected_exception=ProviderError, name='test-provider'),
            dev_mode=True,
            max_retries=1,
            base_delay=0,
            sleep=lambda seconds: None,
        )
        options.update(overrides)
        engine = SyncEngine(TENANT, store, **options)
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        engine.stop()


@pytest.fixture
def engine(make_engine):
    return make_engine().start(WEEK)


def course_data(title='Algebra I', course_id='c-1', instructor='Ms. Lane', **extra):
    data = {
        'course': {'id': course_id, 'title': title, 'color': 'bg-green-500'},
        'instructor': {'id': f'i-{instructor}', 'name': instructor, 'email': 'lane@example.org'},
        'room': 'R101',
    }
    data.update(extra)
    return data
