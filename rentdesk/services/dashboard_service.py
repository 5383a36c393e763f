from __future__ import annotations

import calendar
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session

from rentdesk.errors import ValidationError
from rentdesk.models import Customer, Order, OrderReturnAudit, OrderStatus
from rentdesk.services.billing_service import to_money
from rentdesk.time_utils import as_utc, utcnow

RECENT_ORDERS_LIMIT = 8
DONE_STATUSES = (OrderStatus.COMPLETED, OrderStatus.FLAGGED)
OUTSTANDING_STATUSES = (OrderStatus.ACTIVE, OrderStatus.PENDING_RETURN, OrderStatus.PARTIALLY_RETURNED)


@dataclass(frozen=True)
class DashboardStats:
    scheduled_today: int
    ongoing: int
    late_returns: int
    partial_returns: int
    total_orders: int
    total_completed: int
    total_revenue: Decimal
    total_customers: int
    today_collection: Decimal
    today_completed: int
    today_new_orders: int

    def to_dict(self) -> dict:
        return asdict(self)


def day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    return (
        datetime.combine(start, time.min, tzinfo=timezone.utc),
        datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc),
    )


def _scoped(query: Select, branch_id: int | None) -> Select:
    if branch_id is not None:
        return query.where(Order.branch_id == branch_id)
    return query


def _count(db: Session, query: Select) -> int:
    return db.execute(query).scalar_one() or 0


def _sum(db: Session, query: Select) -> Decimal:
    return to_money(db.execute(query).scalar_one() or 0)


def dashboard_stats(
    db: Session,
    *,
    branch_id: int | None,
    start: date | None = None,
    end: date | None = None,
    now: datetime | None = None,
) -> DashboardStats:
    now = as_utc(now) or utcnow()
    today = now.date()
    start = start or today
    end = end or today
    if end < start:
        raise ValidationError('Report end date must not be before the start date', field='end')
    range_from, range_to = day_bounds(start, end)
    today_from, today_to = day_bounds(today, today)

    count_orders = _scoped(select(func.count(Order.id)), branch_id)
    sum_orders = _scoped(select(func.coalesce(func.sum(Order.total_amount), 0)), branch_id)
    in_range = (Order.created_at >= range_from, Order.created_at < range_to)
    created_today = (Order.created_at >= today_from, Order.created_at < today_to)

    finished_today = (
        select(OrderReturnAudit.order_id)
        .where(
            OrderReturnAudit.action == 'items_returned',
            OrderReturnAudit.new_status.in_([status.value for status in DONE_STATUSES]),
            OrderReturnAudit.created_at >= today_from,
            OrderReturnAudit.created_at < today_to,
        )
        .distinct()
    )
    finished_today_filter = (Order.id.in_(finished_today), Order.status.in_(DONE_STATUSES))

    return DashboardStats(
        scheduled_today=_count(
            db, count_orders.where(Order.status == OrderStatus.SCHEDULED, Order.start_date == today)
        ),
        ongoing=_count(db, count_orders.where(Order.status == OrderStatus.ACTIVE)),
        late_returns=_count(
            db,
            count_orders.where(
                Order.status.in_(OUTSTANDING_STATUSES),
                or_(Order.end_datetime < now, Order.end_date < today),
            ),
        ),
        partial_returns=_count(db, count_orders.where(Order.status == OrderStatus.PARTIALLY_RETURNED)),
        total_orders=_count(db, count_orders.where(*in_range)),
        total_completed=_count(db, count_orders.where(*in_range, Order.status.in_(DONE_STATUSES))),
        total_revenue=_sum(db, sum_orders.where(*in_range, Order.status != OrderStatus.CANCELLED)),
        total_customers=_count(db, select(func.count(Customer.id))),
        today_collection=_sum(db, sum_orders.where(*finished_today_filter)),
        today_completed=_count(db, count_orders.where(*finished_today_filter)),
        today_new_orders=_count(db, count_orders.where(*created_today)),
    )


def recent_orders(db: Session, *, branch_id: int | None, limit: int = RECENT_ORDERS_LIMIT) -> list[Order]:
    query = _scoped(select(Order), branch_id).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit)
    return list(db.execute(query).unique().scalars().all())


def month_bounds(year: int, month: int) -> tuple[date, date]:
    if not 1 <= month <= 12:
        raise ValidationError('Month must be between 1 and 12', field='month')
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def calendar_orders(db: Session, *, branch_id: int | None, year: int, month: int) -> dict:
    """Scheduled orders in a month, keyed by ISO start date."""
    first, last = month_bounds(year, month)
    query = _scoped(
        select(Order).where(
            Order.status == OrderStatus.SCHEDULED,
            Order.start_date >= first,
            Order.start_date <= last,
        ),
        branch_id,
    ).order_by(Order.start_date.asc(), Order.start_datetime.asc(), Order.id.asc())
    orders = db.execute(query).unique().scalars().all()

    by_date: dict[str, list[Order]] = defaultdict(list)
    for order in orders:
        by_date[order.start_date.isoformat()].append(order)
    return {
        'month': f'{year:04d}-{month:02d}',
        'counts': {day: {'scheduled': len(day_orders)} for day, day_orders in by_date.items()},
        'orders': dict(by_date),
    }


def revenue_report(db: Session, *, branch_id: int | None, start: date, end: date) -> dict:
    if end < start:
        raise ValidationError('Report end date must not be before the start date', field='end')
    range_from, range_to = day_bounds(start, end)
    rows = db.execute(
        _scoped(
            select(Order.created_at, Order.total_amount, Order.status).where(
                Order.created_at >= range_from,
                Order.created_at < range_to,
                Order.status != OrderStatus.CANCELLED,
            ),
            branch_id,
        )
    ).all()

    days: dict[date, dict] = {}
    cursor = start
    while cursor <= end:
        days[cursor] = {'date': cursor.isoformat(), 'orders': 0, 'revenue': Decimal('0.00'), 'completed': 0}
        cursor += timedelta(days=1)

    for created_at, total_amount, status in rows:
        bucket = days.get(as_utc(created_at).date())
        if bucket is None:
            continue
        bucket['orders'] += 1
        bucket['revenue'] = to_money(bucket['revenue'] + to_money(total_amount))
        if status in DONE_STATUSES:
            bucket['completed'] += 1

    series = list(days.values())
    return {
        'start': start.isoformat(),
        'end': end.isoformat(),
        'total_orders': sum(day['orders'] for day in series),
        'total_revenue': to_money(sum((day['revenue'] for day in series), Decimal('0'))),
        'days': series,
    }
