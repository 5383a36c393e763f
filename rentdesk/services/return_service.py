"""Return reconciliation for rental orders.

``ReturnWorksheet`` is the editable per-item state a staff member works on
while items come back over the counter. ``changes()`` reduces it to the items
that differ from what is stored, and ``process_return`` applies that diff plus
the late fee to the order in the caller's transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time
from decimal import Decimal

from sqlalchemy.orm import Session

from rentdesk.errors import NotFoundError, ValidationError
from rentdesk.models import ItemReturnStatus, Order, OrderItem, OrderStatus
from rentdesk.services.audit_service import log_order_event
from rentdesk.services.billing_service import to_money
from rentdesk.services.order_service import get_order
from rentdesk.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

NOT_RETURNABLE_STATUSES = {OrderStatus.SCHEDULED, OrderStatus.CANCELLED}
NO_CHANGES_MESSAGE = 'No changes to save'

CLASSIFICATION_LABELS = {
    OrderStatus.COMPLETED: 'completed',
    OrderStatus.FLAGGED: 'completed_with_issues',
    OrderStatus.PARTIALLY_RETURNED: 'partially_returned',
}


def order_due_at(order: Order) -> datetime | None:
    if order.end_datetime is not None:
        return as_utc(order.end_datetime)
    if order.end_date is not None:
        return as_utc(datetime.combine(order.end_date, time.min))
    return None


def is_late(order: Order, now: datetime | None = None) -> bool:
    if order.status in NOT_RETURNABLE_STATUSES:
        return False
    due = order_due_at(order)
    if due is None:
        return False
    return (as_utc(now) or utcnow()) > due


@dataclass(frozen=True)
class ItemSnapshot:
    """The return-relevant fields of one item, stored or proposed."""

    quantity: int
    returned_quantity: int
    damage_fee: Decimal
    damage_description: str
    missing: bool = False

    @property
    def fully_returned(self) -> bool:
        return not self.missing and self.returned_quantity == self.quantity

    @property
    def partially_returned(self) -> bool:
        return not self.missing and 0 < self.returned_quantity < self.quantity

    @property
    def not_returned(self) -> bool:
        return not self.missing and self.returned_quantity == 0

    @property
    def damaged(self) -> bool:
        return self.damage_fee > 0 or bool(self.damage_description)


def snapshot_item(item: OrderItem) -> ItemSnapshot:
    return ItemSnapshot(
        quantity=item.quantity,
        returned_quantity=item.returned_quantity or 0,
        damage_fee=to_money(item.damage_fee),
        damage_description=item.damage_description or '',
        missing=item.return_status == ItemReturnStatus.MISSING,
    )


def classify(snapshots: list[ItemSnapshot]) -> OrderStatus | None:
    """Order status implied by item return state, or None to leave it as is.

    Everything back in full and undamaged completes the order. Every item back
    in some quantity but with a shortfall or damage flags it. If any item is
    still out or missing while others have come back, the order is partially
    returned.
    """
    if not snapshots:
        return None
    if all(s.fully_returned and not s.damaged for s in snapshots):
        return OrderStatus.COMPLETED
    if all(not s.missing and s.returned_quantity > 0 for s in snapshots):
        return OrderStatus.FLAGGED
    if any(s.missing or s.returned_quantity > 0 for s in snapshots):
        return OrderStatus.PARTIALLY_RETURNED
    return None


def classification_label(status: OrderStatus | None) -> str:
    return CLASSIFICATION_LABELS.get(status, 'partially_returned')


@dataclass(frozen=True)
class ReturnStats:
    total_items: int
    total_quantity: int
    returned_quantity: int
    fully_returned_items: int
    partially_returned_items: int
    not_returned_items: int
    missing_items: int
    total_damage_fees: Decimal

    def to_dict(self) -> dict:
        return {
            'total_items': self.total_items,
            'total_quantity': self.total_quantity,
            'returned_quantity': self.returned_quantity,
            'fully_returned_items': self.fully_returned_items,
            'partially_returned_items': self.partially_returned_items,
            'not_returned_items': self.not_returned_items,
            'missing_items': self.missing_items,
            'total_damage_fees': self.total_damage_fees,
        }


def compute_stats(snapshots: list[ItemSnapshot]) -> ReturnStats:
    return ReturnStats(
        total_items=len(snapshots),
        total_quantity=sum(s.quantity for s in snapshots),
        returned_quantity=sum(s.returned_quantity for s in snapshots),
        fully_returned_items=sum(1 for s in snapshots if s.fully_returned),
        partially_returned_items=sum(1 for s in snapshots if s.partially_returned),
        not_returned_items=sum(1 for s in snapshots if s.not_returned),
        missing_items=sum(1 for s in snapshots if s.missing),
        total_damage_fees=to_money(sum((s.damage_fee for s in snapshots), Decimal('0'))),
    )


@dataclass(frozen=True)
class ItemReturnChange:
    item_id: int
    returned_quantity: int
    damage_fee: Decimal = Decimal('0.00')
    damage_description: str | None = None
    missing: bool = False
    missing_note: str | None = None


@dataclass
class ReturnLine:
    item_id: int
    product_name: str | None
    stored: ItemSnapshot
    returned_quantity: int
    damage_fee: Decimal
    damage_description: str
    missing: bool
    missing_note: str | None = None
    selected: bool = False

    @property
    def quantity(self) -> int:
        return self.stored.quantity

    def snapshot(self) -> ItemSnapshot:
        return ItemSnapshot(
            quantity=self.quantity,
            returned_quantity=self.returned_quantity,
            damage_fee=self.damage_fee,
            damage_description=self.damage_description.strip(),
            missing=self.missing,
        )

    def changed(self) -> bool:
        return self.snapshot() != self.stored


@dataclass
class ReturnWorksheet:
    order_id: int
    lines: list[ReturnLine] = field(default_factory=list)
    late_fee: Decimal = Decimal('0.00')

    @classmethod
    def from_order(cls, order: Order) -> ReturnWorksheet:
        lines = []
        for item in order.items:
            stored = snapshot_item(item)
            lines.append(
                ReturnLine(
                    item_id=item.id,
                    product_name=item.product_name,
                    stored=stored,
                    returned_quantity=stored.returned_quantity,
                    damage_fee=stored.damage_fee,
                    damage_description=stored.damage_description,
                    missing=stored.missing,
                    missing_note=item.missing_note,
                    selected=stored.returned_quantity > 0 or item.return_status == ItemReturnStatus.RETURNED,
                )
            )
        return cls(order_id=order.id, lines=lines, late_fee=to_money(order.late_fee))

    def line(self, item_id: int) -> ReturnLine:
        for line in self.lines:
            if line.item_id == item_id:
                return line
        raise NotFoundError(f'Item {item_id} is not part of order {self.order_id}')

    def toggle(self, item_id: int) -> ReturnLine:
        line = self.line(item_id)
        line.selected = not line.selected
        if not line.selected:
            line.returned_quantity = 0
        return line

    def set_returned_quantity(self, item_id: int, quantity: int) -> ReturnLine:
        line = self.line(item_id)
        line.returned_quantity = max(0, min(int(quantity), line.quantity))
        line.selected = line.returned_quantity > 0
        if line.selected:
            line.missing = False
        return line

    def set_damage_fee(self, item_id: int, amount) -> ReturnLine:
        line = self.line(item_id)
        line.damage_fee = max(to_money(amount), Decimal('0.00'))
        return line

    def set_damage_description(self, item_id: int, text: str | None) -> ReturnLine:
        line = self.line(item_id)
        line.damage_description = text or ''
        return line

    def mark_missing(self, item_id: int, note: str | None = None) -> ReturnLine:
        line = self.line(item_id)
        line.missing = True
        line.missing_note = (note or '').strip() or None
        line.returned_quantity = 0
        line.selected = False
        return line

    def clear_missing(self, item_id: int) -> ReturnLine:
        line = self.line(item_id)
        line.missing = False
        line.missing_note = None
        return line

    def mark_all_returned(self) -> None:
        for line in self.lines:
            line.returned_quantity = line.quantity
            line.missing = False
            line.selected = True

    def set_late_fee(self, amount) -> None:
        fee = to_money(amount)
        if fee < 0:
            raise ValidationError('Late fee cannot be negative', field='late_fee')
        self.late_fee = fee

    def stats(self) -> ReturnStats:
        return compute_stats([line.snapshot() for line in self.lines])

    def changes(self) -> list[ItemReturnChange]:
        return [
            ItemReturnChange(
                item_id=line.item_id,
                returned_quantity=line.returned_quantity,
                damage_fee=line.damage_fee,
                damage_description=line.damage_description.strip() or None,
                missing=line.missing,
                missing_note=line.missing_note,
            )
            for line in self.lines
            if line.changed()
        ]

    def preview_outcome(self) -> str:
        return classification_label(classify([line.snapshot() for line in self.lines]))


@dataclass(frozen=True)
class ItemReturnResult:
    item_id: int
    previous_status: str
    new_status: str
    returned_quantity: int
    damage_fee: Decimal

    def to_dict(self) -> dict:
        return {
            'item_id': self.item_id,
            'previous_status': self.previous_status,
            'new_status': self.new_status,
            'returned_quantity': self.returned_quantity,
            'damage_fee': self.damage_fee,
        }


@dataclass(frozen=True)
class ReturnResult:
    order_id: int
    applied: bool
    message: str
    previous_status: OrderStatus
    new_status: OrderStatus
    classification: str | None
    total_amount: Decimal
    late_fee: Decimal
    damage_fee_total: Decimal
    items: list[ItemReturnResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'order_id': self.order_id,
            'applied': self.applied,
            'message': self.message,
            'previous_status': self.previous_status.value,
            'new_status': self.new_status.value,
            'classification': self.classification,
            'total_amount': self.total_amount,
            'late_fee': self.late_fee,
            'damage_fee_total': self.damage_fee_total,
            'items': [item.to_dict() for item in self.items],
        }


def _outcome_message(status: OrderStatus, snapshots: list[ItemSnapshot], damage_total: Decimal) -> str:
    if status == OrderStatus.COMPLETED:
        return 'All items returned'
    if status == OrderStatus.FLAGGED:
        damaged = any(s.damaged for s in snapshots)
        partial = any(s.partially_returned for s in snapshots)
        if damaged and partial:
            return f'Items returned with damage (₹{damage_total}) and partial quantities'
        if damaged:
            return f'Items returned with damage (₹{damage_total})'
        short = sum(1 for s in snapshots if s.returned_quantity < s.quantity)
        return f'Partial return: {short} items short'
    if status == OrderStatus.PARTIALLY_RETURNED:
        return 'Some items returned'
    return 'Return processed'


def _apply_change(item: OrderItem, change: ItemReturnChange, *, now: datetime, late: bool) -> None:
    quantity = max(0, min(int(change.returned_quantity), item.quantity))
    fee = to_money(change.damage_fee)
    if fee < 0:
        raise ValidationError(f'Damage fee for item {item.id} cannot be negative', field='damage_fee')

    item.returned_quantity = quantity
    item.damage_fee = fee
    item.damage_description = (change.damage_description or '').strip() or None
    if change.missing:
        item.return_status = ItemReturnStatus.MISSING
        item.missing_note = (change.missing_note or '').strip() or None
        item.actual_return_date = None
        item.late_return = False
    elif quantity > 0:
        # Lateness is fixed when the item comes back, not on later fee edits.
        if item.return_status != ItemReturnStatus.RETURNED or item.actual_return_date is None:
            item.actual_return_date = now
            item.late_return = late
        item.return_status = ItemReturnStatus.RETURNED
        item.missing_note = None
    else:
        item.return_status = ItemReturnStatus.NOT_YET_RETURNED
        item.missing_note = None
        item.actual_return_date = None
        item.late_return = False


def process_return(
    db: Session,
    *,
    order_id: int,
    changes: list[ItemReturnChange],
    late_fee,
    user_id: int | None,
    now: datetime | None = None,
) -> ReturnResult:
    """Apply a batch of item return changes and the late fee to one order.

    Runs inside the caller's transaction: any error leaves every item as it
    was once the caller rolls back. An empty change list writes nothing.
    """
    now = as_utc(now) or utcnow()
    order = get_order(db, order_id)
    previous_status = order.status

    if not changes:
        return ReturnResult(
            order_id=order.id,
            applied=False,
            message=NO_CHANGES_MESSAGE,
            previous_status=previous_status,
            new_status=previous_status,
            classification=None,
            total_amount=to_money(order.total_amount),
            late_fee=to_money(order.late_fee),
            damage_fee_total=to_money(order.damage_fee_total),
        )

    if order.status in NOT_RETURNABLE_STATUSES:
        raise ValidationError(f'Returns cannot be processed for {order.status.value} orders', field='status')
    fee = to_money(late_fee)
    if fee < 0:
        raise ValidationError('Late fee cannot be negative', field='late_fee')

    items_by_id = {item.id: item for item in order.items}
    late = is_late(order, now)
    results = []
    for change in changes:
        item = items_by_id.get(change.item_id)
        if item is None:
            raise NotFoundError(f'Item {change.item_id} is not part of order {order.id}')
        before = item.return_status
        _apply_change(item, change, now=now, late=late)
        results.append(
            ItemReturnResult(
                item_id=item.id,
                previous_status=before.value,
                new_status=item.return_status.value,
                returned_quantity=item.returned_quantity,
                damage_fee=item.damage_fee,
            )
        )
        log_order_event(
            db,
            order_id=order.id,
            order_item_id=item.id,
            action='item_missing' if item.return_status == ItemReturnStatus.MISSING else 'item_returned',
            user_id=user_id,
            previous_status=before.value,
            new_status=item.return_status.value,
            notes=f'{item.returned_quantity}/{item.quantity} returned',
        )

    snapshots = [snapshot_item(item) for item in order.items]
    damage_total = compute_stats(snapshots).total_damage_fees
    base_total = to_money(order.total_amount) - to_money(order.late_fee) - to_money(order.damage_fee_total)
    order.total_amount = to_money(base_total + fee + damage_total)
    order.late_fee = fee
    order.damage_fee_total = damage_total
    order.late_returned = any(item.late_return for item in order.items)

    status = classify(snapshots)
    if status is not None:
        order.status = status
    if order.status == OrderStatus.COMPLETED:
        order.completed_at = order.completed_at or now
    else:
        order.completed_at = None
    message = _outcome_message(order.status, snapshots, damage_total)
    log_order_event(
        db,
        order_id=order.id,
        action='items_returned',
        user_id=user_id,
        previous_status=previous_status.value,
        new_status=order.status.value,
        notes=message,
    )
    db.flush()
    logger.info('Processed return for order %s: %s -> %s', order.id, previous_status.value, order.status.value)
    return ReturnResult(
        order_id=order.id,
        applied=True,
        message=message,
        previous_status=previous_status,
        new_status=order.status,
        classification=classification_label(status),
        total_amount=order.total_amount,
        late_fee=fee,
        damage_fee_total=damage_total,
        items=results,
    )
