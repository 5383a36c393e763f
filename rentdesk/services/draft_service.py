"""Order composition drafts.

A draft belongs to one login session. ``DraftRegistry`` keys drafts by session
token so two tabs of different staff never share state, and ``OrderDraft``
holds the items, dates and invoice number until ``order_service.create_order``
persists them in one transaction.
"""
from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from rentdesk.config import settings
from rentdesk.errors import ValidationError
from rentdesk.services.billing_service import BillingTotals, TaxConfig, compute_totals, line_total, to_money
from rentdesk.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

PAST_TOLERANCE = timedelta(minutes=1)
DEFAULT_RENTAL_LENGTH = timedelta(days=1)

_ITEM_FIELDS = {'photo_url', 'product_name', 'quantity', 'price_per_day', 'days'}
_NUMERIC_ITEM_FIELDS = ('quantity', 'price_per_day', 'days')


@dataclass
class DraftItem:
    photo_url: str | None = None
    product_name: str | None = None
    quantity: int = 1
    price_per_day: Decimal = Decimal('0.00')
    days: int = 1
    line_total: Decimal = Decimal('0.00')
    id: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OrderDraft:
    clock: Callable[[], datetime] = field(default=utcnow, repr=False)
    customer_id: int | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    invoice_number: str = ''
    items: list[DraftItem] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.start is None:
            self.start = self.clock()
        if self.end is None:
            self.end = self.start + DEFAULT_RENTAL_LENGTH

    @property
    def rental_days(self) -> int:
        if not self.start or not self.end or self.end <= self.start:
            return 1
        return max(1, math.ceil((self.end - self.start) / timedelta(days=1)))

    def set_customer(self, customer_id: int, name: str | None = None, phone: str | None = None) -> None:
        self.customer_id = customer_id
        self.customer_name = name
        self.customer_phone = phone

    def set_invoice_number(self, number: str) -> None:
        self.invoice_number = (number or '').strip()

    def _reject_past(self, value: datetime, label: str) -> None:
        if value < self.clock() - PAST_TOLERANCE:
            raise ValidationError(f'{label} cannot be in the past', field=label.lower().replace(' ', '_'))

    def set_start(self, value: datetime) -> None:
        value = as_utc(value)
        self._reject_past(value, 'Start date')
        self.start = value
        if self.end is not None and self.end <= value:
            self.end = value + DEFAULT_RENTAL_LENGTH
        self._sync_days()

    def set_end(self, value: datetime | None) -> None:
        if value is None:
            self.end = None
            return
        value = as_utc(value)
        self._reject_past(value, 'End date')
        if value <= self.start:
            raise ValidationError('End date must be after start date', field='end_date')
        self.end = value
        self._sync_days()

    def _sync_days(self) -> None:
        days = self.rental_days
        for item in self.items:
            item.days = days

    def add_item(self, **fields) -> DraftItem:
        item = DraftItem(days=self.rental_days)
        self._apply(item, fields)
        self.items.insert(0, item)
        return item

    def update_item(self, index: int, **fields) -> DraftItem:
        item = self._item_at(index)
        self._apply(item, fields)
        return item

    def remove_item(self, index: int) -> DraftItem:
        item = self._item_at(index)
        del self.items[index]
        return item

    def _item_at(self, index: int) -> DraftItem:
        if index < 0 or index >= len(self.items):
            raise ValidationError(f'No item at position {index}', field='items')
        return self.items[index]

    def _apply(self, item: DraftItem, fields: dict) -> None:
        unknown = set(fields) - _ITEM_FIELDS
        if unknown:
            raise ValidationError(f"Unknown item field: {', '.join(sorted(unknown))}", field='items')
        for name in _NUMERIC_ITEM_FIELDS:
            if name in fields and fields[name] is None:
                raise ValidationError(f'Item {name.replace("_", " ")} is required', field=name)
        reprice = False
        if 'photo_url' in fields:
            item.photo_url = fields['photo_url'] or None
        if 'product_name' in fields:
            item.product_name = (fields['product_name'] or '').strip() or None
        if 'days' in fields:
            item.days = int(fields['days'])
        if 'quantity' in fields:
            item.quantity = int(fields['quantity'])
            reprice = True
        if 'price_per_day' in fields:
            item.price_per_day = to_money(fields['price_per_day'])
            reprice = True
        if reprice:
            item.line_total = line_total(item.quantity, item.price_per_day)

    def totals(self, tax: TaxConfig) -> BillingTotals:
        return compute_totals((item.line_total for item in self.items), tax)

    def validate(self) -> None:
        if not self.customer_id:
            raise ValidationError('Please select a customer', field='customer_id')
        if not self.end:
            raise ValidationError('Please select an end date', field='end_date')
        if not self.items:
            raise ValidationError('Please add at least one item', field='items')
        if not self.invoice_number.strip():
            raise ValidationError('Please enter an invoice number', field='invoice_number')
        for position, item in enumerate(self.items, start=1):
            if not item.photo_url:
                raise ValidationError(f'Item {position} is missing a photo', field='photo_url')
            if item.quantity <= 0:
                raise ValidationError(f'Item {position} quantity must be greater than 0', field='quantity')
            if item.price_per_day < 0:
                raise ValidationError(f'Item {position} price cannot be negative', field='price_per_day')

    def load_order(self, order) -> None:
        self.customer_id = order.customer_id
        self.customer_name = order.customer.name if order.customer else None
        self.customer_phone = order.customer.phone if order.customer else None
        self.start = as_utc(order.start_datetime) or as_utc(datetime.combine(order.start_date, datetime.min.time()))
        self.end = as_utc(order.end_datetime) or as_utc(datetime.combine(order.end_date, datetime.min.time()))
        self.invoice_number = order.invoice_number
        self.items = [
            DraftItem(
                id=item.id,
                photo_url=item.photo_url,
                product_name=item.product_name,
                quantity=item.quantity,
                price_per_day=to_money(item.price_per_day),
                days=item.days,
                line_total=to_money(item.line_total),
            )
            for item in order.items
        ]

    def to_dict(self, tax: TaxConfig | None = None) -> dict:
        payload = {
            'customer_id': self.customer_id,
            'customer_name': self.customer_name,
            'customer_phone': self.customer_phone,
            'start_datetime': self.start,
            'end_datetime': self.end,
            'rental_days': self.rental_days,
            'invoice_number': self.invoice_number,
            'items': [item.to_dict() for item in self.items],
        }
        if tax is not None:
            totals = self.totals(tax)
            payload.update(
                subtotal=totals.subtotal,
                gst_amount=totals.gst_amount,
                grand_total=totals.grand_total,
            )
        return payload


class DraftRegistry:
    """One draft per session token.

    Sessions slide their expiry on every request, so a draft untouched for
    longer than the session TTL belongs to a session that can no longer log
    in. Such drafts are dropped on the next access to the registry.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow, idle_ttl: timedelta | None = None) -> None:
        self._clock = clock
        self._idle_ttl = idle_ttl if idle_ttl is not None else timedelta(minutes=settings.session_ttl_minutes)
        self._drafts: dict[str, OrderDraft] = {}
        self._last_seen: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def get(self, token: str) -> OrderDraft:
        with self._lock:
            now = self._clock()
            self._evict_idle(now)
            draft = self._drafts.get(token)
            if draft is None:
                draft = OrderDraft(clock=self._clock)
                self._drafts[token] = draft
            self._last_seen[token] = now
            return draft

    def clear(self, token: str) -> None:
        with self._lock:
            self._drafts.pop(token, None)
            self._last_seen.pop(token, None)

    def evict_idle(self) -> int:
        with self._lock:
            return self._evict_idle(self._clock())

    def _evict_idle(self, now: datetime) -> int:
        cutoff = now - self._idle_ttl
        stale = [token for token, seen in self._last_seen.items() if seen < cutoff]
        for token in stale:
            self._drafts.pop(token, None)
            self._last_seen.pop(token, None)
        if stale:
            logger.info('Dropped %s drafts of expired sessions', len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._drafts)

