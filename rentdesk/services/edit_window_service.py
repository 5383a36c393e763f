from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from rentdesk.config import settings
from rentdesk.models import Order, OrderStatus
from rentdesk.time_utils import as_utc, utcnow


class EditMode(str, Enum):
    FULL = 'full'
    INVOICE_ONLY = 'invoice_only'


def active_since(order: Order) -> datetime | None:
    return as_utc(order.start_datetime) or as_utc(order.created_at)


def resolve_edit_mode(
    order: Order,
    *,
    now: datetime | None = None,
    window: timedelta | None = None,
) -> EditMode:
    now = as_utc(now) or utcnow()
    window = window if window is not None else timedelta(minutes=settings.order_edit_window_minutes)

    if order.status in {OrderStatus.COMPLETED, OrderStatus.CANCELLED}:
        return EditMode.INVOICE_ONLY
    if order.status == OrderStatus.SCHEDULED:
        return EditMode.FULL
    if order.status == OrderStatus.ACTIVE:
        since = active_since(order)
        if since is None:
            return EditMode.INVOICE_ONLY
        return EditMode.FULL if now - since <= window else EditMode.INVOICE_ONLY
    return EditMode.INVOICE_ONLY


def can_edit_fully(order: Order, *, now: datetime | None = None) -> bool:
    return resolve_edit_mode(order, now=now) == EditMode.FULL
