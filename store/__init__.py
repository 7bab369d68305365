from store.catalog import CatalogStore
from store.database import create_db_engine, create_session_factory, create_tables
from store.schedule_store import ScheduleStore
from store.subscriptions import (
    DELETE, INSERT, UPDATE, ChangeEvent, ScheduleCallbacks, Subscription, SubscriptionHub
)

__all__ = [
    'CatalogStore', 'ScheduleStore', 'SubscriptionHub', 'Subscription', 'ScheduleCallbacks',
    'ChangeEvent', 'INSERT', 'UPDATE', 'DELETE',
    'create_db_engine', 'create_session_factory', 'create_tables',
]
