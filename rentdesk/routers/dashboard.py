from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rentdesk.auth import Capability, Principal, get_current_principal, require_capability, resolve_branch_scope
from rentdesk.db import get_db
from rentdesk.schemas import OrderSummaryOut
from rentdesk.services import dashboard_service
from rentdesk.time_utils import utcnow

router = APIRouter(prefix='/dashboard', tags=['dashboard'])


@router.get('/stats')
def dashboard_stats(
    branch_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    stats = dashboard_service.dashboard_stats(
        db,
        branch_id=resolve_branch_scope(principal, branch_id),
        start=start,
        end=end,
    )
    return stats.to_dict()


@router.get('/recent-orders')
def recent_orders(
    branch_id: int | None = None,
    limit: int = dashboard_service.RECENT_ORDERS_LIMIT,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    orders = dashboard_service.recent_orders(
        db,
        branch_id=resolve_branch_scope(principal, branch_id),
        limit=max(1, min(limit, 50)),
    )
    return [OrderSummaryOut.model_validate(order).model_dump(mode='json') for order in orders]


@router.get('/calendar')
def calendar_orders(
    year: int | None = None,
    month: int | None = None,
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    today = utcnow().date()
    result = dashboard_service.calendar_orders(
        db,
        branch_id=resolve_branch_scope(principal, branch_id),
        year=year or today.year,
        month=month or today.month,
    )
    result['orders'] = {
        day: [OrderSummaryOut.model_validate(order).model_dump(mode='json') for order in orders]
        for day, orders in result['orders'].items()
    }
    return result


@router.get('/revenue')
def revenue_report(
    start: date,
    end: date,
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.VIEW_REPORTS)),
):
    return dashboard_service.revenue_report(
        db,
        branch_id=resolve_branch_scope(principal, branch_id),
        start=start,
        end=end,
    )
