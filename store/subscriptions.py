# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Push-based change notification for schedule rows, filtered by (tenant, week)
"""
import logging
from dataclasses import dataclass
from datetime import date
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple

from models import ScheduleEntry

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    """A committed change; `origin` names the session that wrote it"""
    kind: str
    entry: ScheduleEntry
    previous: Optional[ScheduleEntry] = None
    origin: Optional[str] = None


@dataclass
class ScheduleCallbacks:
    on_insert: Optional[Callable[[ChangeEvent], None]] = None
    on_update: Optional[Callable[[ChangeEvent], None]] = None
    on_delete: Optional[Callable[[ChangeEvent], None]] = None


@dataclass(frozen=True)
class Subscription:
    tenant_id: str
    week_start: date
    subscriber: str
    token: int


class SubscriptionHub:
    """
    Process-wide channel registry

    One live channel per (tenant, week, subscriber): subscribing again for the
    same key replaces the previous callbacks instead of stacking them.
    """

    def __init__(self):
        self._channels: Dict[Tuple[str, date, str], Tuple[int, ScheduleCallbacks]] = {}
        self._lock = Lock()
        self._next_token = 0

    def subscribe(self, tenant_id: str, week_start: date, callbacks: ScheduleCallbacks,
                  subscriber: str = "default") -> Subscription:
        key = (tenant_id, week_start, subscriber)
        with self._lock:
            self._next_token += 1
            token = self._next_token
            if key in self._channels:
                logger.info(f"Replacing subscription {tenant_id}/{week_start}/{subscriber}")
            self._channels[key] = (token, callbacks)
        logger.debug(f"Subscribed {subscriber} to {tenant_id}/{week_start}")
        return Subscription(tenant_id, week_start, subscriber, token)

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription; stale handles (already replaced) are ignored"""
        key = (subscription.tenant_id, subscription.week_start, subscription.subscriber)
        with self._lock:
            current = self._channels.get(key)
            if current is None or current[0] != subscription.token:
                return False
            del self._channels[key]
        logger.debug(f"Unsubscribed {subscription.subscriber} from "
                     f"{subscription.tenant_id}/{subscription.week_start}")
        return True

    def unsubscribe_all(self):
        with self._lock:
            self._channels.clear()

    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def publish(self, tenant_id: str, week_start: date, event: ChangeEvent):
        with self._lock:
            targets: List[ScheduleCallbacks] = [
                callbacks for (tenant, week, _), (_, callbacks) in self._channels.items()
                if tenant == tenant_id and week == week_start
            ]

        for callbacks in targets:
            handler = {
                INSERT: callbacks.on_insert,
                UPDATE: callbacks.on_update,
                DELETE: callbacks.on_delete,
            }.get(event.kind)
            if handler is None:
                continue
            try:
                handler(event)
            except Exception as e:
                # A broken listener must not stop delivery to the others
                logger.error(f"Subscription callback failed for {event.kind}: {e}", exc_info=True)
