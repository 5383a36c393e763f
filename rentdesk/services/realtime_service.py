"""Branch-scoped change notifications used to invalidate cached queries.

Writers publish a ``ChangeEvent`` after commit. Each subscription collects
matching events and, once the debounce window has been quiet, receives a
single ``Invalidation`` naming the query buckets to refetch. Delivery is
best-effort: a failing subscriber is logged and left in place, and callers
that miss events fall back to their next manual refetch.
"""
from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from rentdesk.config import settings

logger = logging.getLogger(__name__)

ORDER_TABLES = ('orders', 'order_items')
INVALIDATED_BUCKETS = (
    'orders',
    'orders-infinite',
    'dashboard-stats',
    'recent-orders',
    'order',
    'calendar-orders',
)


class ChangeKind(str, Enum):
    INSERT = 'INSERT'
    UPDATE = 'UPDATE'
    DELETE = 'DELETE'


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    kind: ChangeKind
    branch_id: int | None
    row_id: int | None = None
    order_id: int | None = None


@dataclass(frozen=True)
class Invalidation:
    branch_id: int | None
    buckets: tuple[str, ...]
    order_ids: tuple[int, ...]
    event_count: int

    def to_dict(self) -> dict:
        return {
            'branch_id': self.branch_id,
            'buckets': list(self.buckets),
            'order_ids': list(self.order_ids),
            'event_count': self.event_count,
        }


InvalidationCallback = Callable[[Invalidation], None]
_subscription_ids = itertools.count(1)


@dataclass(eq=False)
class Subscription:
    callback: InvalidationCallback
    branch_id: int | None
    tables: frozenset[str]
    id: int = field(default_factory=lambda: next(_subscription_ids))
    pending: list[ChangeEvent] = field(default_factory=list)
    timer: object | None = None

    def matches(self, event: ChangeEvent) -> bool:
        if event.table not in self.tables:
            return False
        return self.branch_id is None or event.branch_id == self.branch_id


class InvalidationManager:
    def __init__(
        self,
        debounce_seconds: float | None = None,
        timer_factory: Callable[..., object] = threading.Timer,
    ) -> None:
        self.debounce_seconds = settings.realtime_debounce_seconds if debounce_seconds is None else debounce_seconds
        self._timer_factory = timer_factory
        self._subscriptions: dict[int, Subscription] = {}
        self._lock = threading.RLock()

    def subscribe(
        self,
        callback: InvalidationCallback,
        *,
        branch_id: int | None = None,
        tables: tuple[str, ...] = ORDER_TABLES,
    ) -> Subscription:
        subscription = Subscription(callback=callback, branch_id=branch_id, tables=frozenset(tables))
        with self._lock:
            self._subscriptions[subscription.id] = subscription
        logger.debug('Realtime subscription %s opened for branch %s', subscription.id, branch_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.pop(subscription.id, None)
            self._cancel_timer(subscription)
            subscription.pending.clear()

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> None:
        due_now: list[Subscription] = []
        with self._lock:
            for subscription in self._subscriptions.values():
                if not subscription.matches(event):
                    continue
                subscription.pending.append(event)
                if self.debounce_seconds <= 0:
                    due_now.append(subscription)
                    continue
                self._cancel_timer(subscription)
                timer = self._timer_factory(self.debounce_seconds, self._deliver, args=(subscription,))
                if hasattr(timer, 'daemon'):
                    timer.daemon = True
                subscription.timer = timer
                timer.start()
        for subscription in due_now:
            self._deliver(subscription)

    def flush(self, subscription: Subscription | None = None) -> None:
        with self._lock:
            targets = [subscription] if subscription else list(self._subscriptions.values())
            for target in targets:
                self._cancel_timer(target)
        for target in targets:
            self._deliver(target)

    def close(self) -> None:
        with self._lock:
            for subscription in list(self._subscriptions.values()):
                self.unsubscribe(subscription)

    def _cancel_timer(self, subscription: Subscription) -> None:
        if subscription.timer is not None:
            subscription.timer.cancel()
            subscription.timer = None

    def _deliver(self, subscription: Subscription) -> None:
        with self._lock:
            events = list(subscription.pending)
            subscription.pending.clear()
            subscription.timer = None
            if not events or subscription.id not in self._subscriptions:
                return
        order_ids = sorted({event.order_id for event in events if event.order_id is not None})
        invalidation = Invalidation(
            branch_id=subscription.branch_id,
            buckets=INVALIDATED_BUCKETS,
            order_ids=tuple(order_ids),
            event_count=len(events),
        )
        try:
            subscription.callback(invalidation)
        except Exception:
            logger.warning('Realtime subscriber %s failed; cache stays stale until refetch', subscription.id, exc_info=True)


def order_event(order, kind: ChangeKind) -> ChangeEvent:
    return ChangeEvent(table='orders', kind=kind, branch_id=order.branch_id, row_id=order.id, order_id=order.id)


def order_items_event(order, kind: ChangeKind = ChangeKind.UPDATE) -> ChangeEvent:
    return ChangeEvent(table='order_items', kind=kind, branch_id=order.branch_id, order_id=order.id)
