from __future__ import annotations

import logging
import random
from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rentdesk.config import settings
from rentdesk.errors import NotFoundError, PersistenceError, ValidationError
from rentdesk.models import Customer, Order, OrderItem, OrderStatus
from rentdesk.services.audit_service import log_order_event
from rentdesk.services.billing_service import BillingTotals, TaxConfig, order_total, to_money
from rentdesk.services.draft_service import OrderDraft
from rentdesk.services.edit_window_service import EditMode, resolve_edit_mode
from rentdesk.services.query_utils import Page, normalize_search_text, paginate
from rentdesk.time_utils import local_date, utcnow

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = {OrderStatus.SCHEDULED, OrderStatus.ACTIVE}
EDIT_WINDOW_EXPIRED_MESSAGE = 'This order can no longer be edited. It has been active for more than {minutes} minutes.'


def generate_invoice_number(now: datetime | None = None, rng: random.Random | None = None) -> str:
    now = now or utcnow()
    suffix = (rng or random).randint(0, 9999)
    return f'{settings.invoice_prefix}-{now:%Y%m%d}-{suffix:04d}'


def initial_status(start: datetime, now: datetime | None = None, tz_name: str | None = None) -> OrderStatus:
    now = now or utcnow()
    if local_date(start, tz_name) > local_date(now, tz_name):
        return OrderStatus.SCHEDULED
    return OrderStatus.ACTIVE


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError('Order not found')
    return order


def _ensure_invoice_available(db: Session, invoice_number: str, *, exclude_id: int | None = None) -> None:
    query = select(Order.id).where(Order.invoice_number == invoice_number)
    if exclude_id is not None:
        query = query.where(Order.id != exclude_id)
    if db.execute(query).first():
        raise PersistenceError(f'Invoice number {invoice_number} is already in use')


def _flush(db: Session) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise PersistenceError(f'Could not save order: {exc.orig}') from exc


def _items_from_draft(draft: OrderDraft) -> list[OrderItem]:
    return [
        OrderItem(
            photo_url=item.photo_url,
            product_name=item.product_name,
            quantity=item.quantity,
            price_per_day=to_money(item.price_per_day),
            days=item.days,
            line_total=to_money(item.line_total),
        )
        for item in draft.items
    ]


def _apply_totals(order: Order, totals: BillingTotals) -> None:
    order.subtotal = totals.subtotal
    order.gst_amount = totals.gst_amount
    order.total_amount = order_total(
        totals,
        late_fee=order.late_fee or Decimal('0'),
        damage_fee_total=order.damage_fee_total or Decimal('0'),
    )


def create_order(
    db: Session,
    *,
    draft: OrderDraft,
    branch_id: int,
    staff_id: int,
    tax: TaxConfig,
    now: datetime | None = None,
) -> Order:
    now = now or utcnow()
    draft.validate()
    if not db.get(Customer, draft.customer_id):
        raise NotFoundError('Customer not found')
    invoice_number = draft.invoice_number.strip()
    _ensure_invoice_available(db, invoice_number)

    order = Order(
        branch_id=branch_id,
        staff_id=staff_id,
        customer_id=draft.customer_id,
        invoice_number=invoice_number,
        booking_date=now,
        start_date=draft.start.date(),
        end_date=draft.end.date(),
        start_datetime=draft.start,
        end_datetime=draft.end,
        status=initial_status(draft.start, now),
        late_fee=Decimal('0.00'),
        damage_fee_total=Decimal('0.00'),
        items=_items_from_draft(draft),
    )
    _apply_totals(order, draft.totals(tax))
    db.add(order)
    _flush(db)
    logger.info('Created order %s (%s) for branch %s', order.id, order.invoice_number, branch_id)
    return order


def update_order(
    db: Session,
    *,
    order_id: int,
    invoice_number: str,
    draft: OrderDraft | None,
    tax: TaxConfig,
    actor_id: int | None,
    now: datetime | None = None,
) -> Order:
    """Apply an edit, re-checking the edit window at submission time.

    ``draft=None`` is an invoice-only edit and is always allowed. A draft
    replaces dates, customer and items and is rejected once the order is
    outside its full-edit window.
    """
    order = get_order(db, order_id)
    clean_invoice = (invoice_number or '').strip()
    if not clean_invoice:
        raise ValidationError('Please enter an invoice number', field='invoice_number')
    _ensure_invoice_available(db, clean_invoice, exclude_id=order.id)

    if draft is not None:
        if resolve_edit_mode(order, now=now) != EditMode.FULL:
            raise ValidationError(
                EDIT_WINDOW_EXPIRED_MESSAGE.format(minutes=settings.order_edit_window_minutes),
                field='status',
            )
        draft.set_invoice_number(clean_invoice)
        draft.validate()
        if not db.get(Customer, draft.customer_id):
            raise NotFoundError('Customer not found')
        order.customer_id = draft.customer_id
        order.start_datetime = draft.start
        order.end_datetime = draft.end
        order.start_date = draft.start.date()
        order.end_date = draft.end.date()
        order.items.clear()
        _flush(db)
        order.items.extend(_items_from_draft(draft))
        _apply_totals(order, draft.totals(tax))

    previous_invoice = order.invoice_number
    order.invoice_number = clean_invoice
    _flush(db)
    log_order_event(
        db,
        order_id=order.id,
        action='order_updated' if draft is not None else 'invoice_updated',
        user_id=actor_id,
        previous_status=order.status.value,
        new_status=order.status.value,
        notes=None if previous_invoice == clean_invoice else f'Invoice {previous_invoice} -> {clean_invoice}',
    )
    return order


def start_rental(db: Session, *, order_id: int, actor_id: int | None, now: datetime | None = None) -> Order:
    now = now or utcnow()
    order = get_order(db, order_id)
    if order.status != OrderStatus.SCHEDULED:
        raise ValidationError('Only scheduled orders can be started', field='status')
    order.status = OrderStatus.ACTIVE
    order.start_datetime = now
    order.start_date = now.date()
    if order.end_date < order.start_date:
        order.end_date = order.start_date
    _flush(db)
    log_order_event(
        db,
        order_id=order.id,
        action='rental_started',
        user_id=actor_id,
        previous_status=OrderStatus.SCHEDULED.value,
        new_status=OrderStatus.ACTIVE.value,
    )
    return order


def cancel_order(db: Session, *, order_id: int, actor_id: int | None) -> Order:
    order = get_order(db, order_id)
    if order.status not in CANCELLABLE_STATUSES:
        raise ValidationError(f'Orders in status {order.status.value} cannot be cancelled', field='status')
    previous = order.status
    order.status = OrderStatus.CANCELLED
    _flush(db)
    log_order_event(
        db,
        order_id=order.id,
        action='order_cancelled',
        user_id=actor_id,
        previous_status=previous.value,
        new_status=OrderStatus.CANCELLED.value,
    )
    return order


def delete_order(db: Session, *, order_id: int) -> list[str]:
    """Delete an order with its items; returns the photo URLs it referenced."""
    order = get_order(db, order_id)
    photo_urls = [item.photo_url for item in order.items if item.photo_url]
    db.delete(order)
    _flush(db)
    logger.info('Deleted order %s', order_id)
    return photo_urls


def list_orders(
    db: Session,
    *,
    branch_id: int | None,
    status: OrderStatus | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> Page:
    query = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
    if branch_id is not None:
        query = query.where(Order.branch_id == branch_id)
    if status is not None:
        query = query.where(Order.status == status)
    term = normalize_search_text(search)
    if term:
        pattern = f'%{term}%'
        query = query.join(Customer, Customer.id == Order.customer_id).where(
            or_(Order.invoice_number.ilike(pattern), Customer.name.ilike(pattern), Customer.phone.ilike(pattern))
        )
    return paginate(db, query, page=page, page_size=page_size)


def refresh_overdue_orders(db: Session, *, now: datetime | None = None) -> int:
    """Move active rentals whose end has passed to pending_return."""
    now = now or utcnow()
    result = db.execute(
        update(Order)
        .where(
            Order.status == OrderStatus.ACTIVE,
            or_(Order.end_datetime < now, Order.end_date < now.date()),
        )
        .values(status=OrderStatus.PENDING_RETURN)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info('Marked %s orders as pending return', result.rowcount)
    return result.rowcount or 0


def cancel_expired_scheduled_orders(db: Session, *, now: datetime | None = None) -> int:
    """Cancel scheduled orders whose start passed without the rental being started."""
    now = now or utcnow()
    result = db.execute(
        update(Order)
        .where(
            Order.status == OrderStatus.SCHEDULED,
            or_(Order.start_datetime < now, Order.start_date < now.date()),
        )
        .values(status=OrderStatus.CANCELLED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info('Cancelled %s expired scheduled orders', result.rowcount)
    return result.rowcount or 0
