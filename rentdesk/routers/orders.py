from __future__ import annotations

import logging
from datetime import datetime
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from rentdesk.auth import Capability, Principal, assert_branch_scope, get_current_principal, require_capability
from rentdesk.auth import resolve_branch_scope
from rentdesk.db import get_db
from rentdesk.dependencies import (
    get_draft,
    get_draft_registry,
    get_notifier,
    get_session_token,
    get_storage,
    get_templates,
)
from rentdesk.errors import UploadError, ValidationError
from rentdesk.models import Order, OrderStatus
from rentdesk.schemas import (
    DraftCustomerIn,
    DraftDatesIn,
    DraftInvoiceIn,
    DraftItemIn,
    DraftItemUpdate,
    OrderOut,
    OrderSummaryOut,
    OrderUpdateIn,
    ReturnRequest,
)
from rentdesk.security.csrf import verify_csrf
from rentdesk.services import order_service
from rentdesk.services.billing_service import TaxConfig
from rentdesk.services.customer_service import get_customer
from rentdesk.services.draft_service import DraftRegistry, OrderDraft
from rentdesk.services.edit_window_service import resolve_edit_mode
from rentdesk.services.realtime_service import ChangeKind, InvalidationManager, order_event, order_items_event
from rentdesk.services.return_service import ReturnWorksheet, is_late, process_return
from rentdesk.services.staff_service import get_staff
from rentdesk.services.storage_service import LocalObjectStorage
from rentdesk.services.timeline_service import order_timeline
from rentdesk.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/orders', tags=['orders'])


def _tax_for(db: Session, principal: Principal) -> TaxConfig:
    return TaxConfig.from_profile(get_staff(db, principal.id))


def _order_payload(order: Order, now: datetime | None = None) -> dict:
    now = now or utcnow()
    payload = OrderOut.model_validate(order).model_dump(mode='json')
    payload['edit_mode'] = resolve_edit_mode(order, now=now).value
    payload['is_late'] = is_late(order, now)
    return payload


def _load_scoped_order(db: Session, principal: Principal, order_id: int) -> Order:
    order = order_service.get_order(db, order_id)
    assert_branch_scope(principal, order.branch_id)
    return order


def _publish(notifier: InvalidationManager, order: Order, kind: ChangeKind, *, items: bool = False) -> None:
    notifier.publish(order_event(order, kind))
    if items:
        notifier.publish(order_items_event(order, kind))


@router.get('')
def list_orders(
    branch_id: int | None = None,
    status_filter: OrderStatus | None = Query(default=None, alias='status'),
    search: str | None = None,
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    result = order_service.list_orders(
        db,
        branch_id=resolve_branch_scope(principal, branch_id),
        status=status_filter,
        search=search,
        page=page,
        page_size=page_size,
    )
    return {
        'data': [OrderSummaryOut.model_validate(order).model_dump(mode='json') for order in result.data],
        'total': result.total,
        'page': result.page,
        'page_size': result.page_size,
        'total_pages': result.total_pages,
    }


@router.get('/invoice-number')
def suggest_invoice_number(_: Principal = Depends(get_current_principal)):
    return {'invoice_number': order_service.generate_invoice_number()}


@router.get('/draft')
def get_order_draft(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    draft: OrderDraft = Depends(get_draft),
):
    return draft.to_dict(_tax_for(db, principal))


@router.put('/draft/customer')
def set_draft_customer(
    payload: DraftCustomerIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    draft: OrderDraft = Depends(get_draft),
    _: None = Depends(verify_csrf),
):
    customer = get_customer(db, payload.customer_id)
    draft.set_customer(customer.id, payload.name or customer.name, payload.phone or customer.phone)
    return draft.to_dict(_tax_for(db, principal))


@router.put('/draft/dates')
def set_draft_dates(
    payload: DraftDatesIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    draft: OrderDraft = Depends(get_draft),
    _: None = Depends(verify_csrf),
):
    if payload.start_datetime is not None:
        draft.set_start(payload.start_datetime)
    if 'end_datetime' in payload.model_fields_set:
        draft.set_end(payload.end_datetime)
    return draft.to_dict(_tax_for(db, principal))


@router.put('/draft/invoice')
def set_draft_invoice(
    payload: DraftInvoiceIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    draft: OrderDraft = Depends(get_draft),
    _: None = Depends(verify_csrf),
):
    draft.set_invoice_number(payload.invoice_number)
    return draft.to_dict(_tax_for(db, principal))


@router.post('/draft/items', status_code=status.HTTP_201_CREATED)
def add_draft_item(
    payload: DraftItemIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    draft: OrderDraft = Depends(get_draft),
    _: None = Depends(verify_csrf),
):
    draft.add_item(**payload.model_dump(exclude_unset=True))
    return draft.to_dict(_tax_for(db, principal))


@router.patch('/draft/items/{index}')
def update_draft_item(
    index: int,
    payload: DraftItemUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    draft: OrderDraft = Depends(get_draft),
    _: None = Depends(verify_csrf),
):
    draft.update_item(index, **payload.model_dump(exclude_unset=True))
    return draft.to_dict(_tax_for(db, principal))


@router.delete('/draft/items/{index}')
def remove_draft_item(
    index: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    draft: OrderDraft = Depends(get_draft),
    _: None = Depends(verify_csrf),
):
    draft.remove_item(index)
    return draft.to_dict(_tax_for(db, principal))


@router.delete('/draft', status_code=status.HTTP_204_NO_CONTENT)
def discard_draft(
    token: str = Depends(get_session_token),
    drafts: DraftRegistry = Depends(get_draft_registry),
    _: None = Depends(verify_csrf),
):
    drafts.clear(token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post('/draft/submit', status_code=status.HTTP_201_CREATED)
def submit_draft(
    branch_id: int | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    draft: OrderDraft = Depends(get_draft),
    token: str = Depends(get_session_token),
    drafts: DraftRegistry = Depends(get_draft_registry),
    notifier: InvalidationManager = Depends(get_notifier),
    _: None = Depends(verify_csrf),
):
    target_branch_id = resolve_branch_scope(principal, branch_id)
    if target_branch_id is None:
        raise ValidationError('Select a branch for this order', field='branch_id')
    order = order_service.create_order(
        db,
        draft=draft,
        branch_id=target_branch_id,
        staff_id=principal.id,
        tax=_tax_for(db, principal),
    )
    db.commit()
    drafts.clear(token)
    _publish(notifier, order, ChangeKind.INSERT, items=True)
    return _order_payload(order)


@router.get('/{order_id}')
def get_order(order_id: int, db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)):
    return _order_payload(_load_scoped_order(db, principal, order_id))


def _draft_for_update(order: Order, payload: OrderUpdateIn) -> OrderDraft:
    draft = OrderDraft()
    draft.load_order(order)
    if payload.customer_id is not None and payload.customer_id != draft.customer_id:
        draft.set_customer(payload.customer_id)
    if payload.start_datetime is not None and as_utc(payload.start_datetime) != draft.start:
        draft.set_start(payload.start_datetime)
    if payload.end_datetime is not None and as_utc(payload.end_datetime) != draft.end:
        draft.set_end(payload.end_datetime)
    if payload.items is not None:
        draft.items = []
        for item in reversed(payload.items):
            draft.add_item(**item.model_dump())
    return draft


@router.put('/{order_id}')
def update_order(
    order_id: int,
    payload: OrderUpdateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: InvalidationManager = Depends(get_notifier),
    _: None = Depends(verify_csrf),
):
    order = _load_scoped_order(db, principal, order_id)
    draft = _draft_for_update(order, payload) if payload.is_full_edit else None
    order = order_service.update_order(
        db,
        order_id=order.id,
        invoice_number=payload.invoice_number,
        draft=draft,
        tax=_tax_for(db, principal),
        actor_id=principal.id,
    )
    db.commit()
    _publish(notifier, order, ChangeKind.UPDATE, items=draft is not None)
    return _order_payload(order)


@router.post('/{order_id}/start')
def start_rental(
    order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: InvalidationManager = Depends(get_notifier),
    _: None = Depends(verify_csrf),
):
    _load_scoped_order(db, principal, order_id)
    order = order_service.start_rental(db, order_id=order_id, actor_id=principal.id)
    db.commit()
    _publish(notifier, order, ChangeKind.UPDATE)
    return _order_payload(order)


@router.post('/{order_id}/cancel')
def cancel_order(
    order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: InvalidationManager = Depends(get_notifier),
    _: None = Depends(verify_csrf),
):
    _load_scoped_order(db, principal, order_id)
    order = order_service.cancel_order(db, order_id=order_id, actor_id=principal.id)
    db.commit()
    _publish(notifier, order, ChangeKind.UPDATE)
    return _order_payload(order)


@router.delete('/{order_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_order(
    order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.DELETE_ORDERS)),
    notifier: InvalidationManager = Depends(get_notifier),
    storage: LocalObjectStorage = Depends(get_storage),
    _: None = Depends(verify_csrf),
):
    order = _load_scoped_order(db, principal, order_id)
    event = order_event(order, ChangeKind.DELETE)
    photo_urls = order_service.delete_order(db, order_id=order_id)
    db.commit()
    for url in photo_urls:
        try:
            storage.delete(url)
        except UploadError as exc:
            logger.warning('Could not delete photo %s of order %s: %s', url, order_id, exc)
    notifier.publish(event)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get('/{order_id}/timeline')
def get_order_timeline(
    order_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    _load_scoped_order(db, principal, order_id)
    return [event.to_dict() for event in order_timeline(db, order_id=order_id)]


def _worksheet_for(order: Order, payload: ReturnRequest) -> ReturnWorksheet:
    worksheet = ReturnWorksheet.from_order(order)
    if payload.mark_all_returned:
        worksheet.mark_all_returned()
    for item in payload.items:
        if item.missing:
            worksheet.mark_missing(item.item_id, item.missing_note)
        else:
            worksheet.clear_missing(item.item_id)
            worksheet.set_returned_quantity(item.item_id, item.returned_quantity)
        worksheet.set_damage_fee(item.item_id, item.damage_fee)
        worksheet.set_damage_description(item.item_id, item.damage_description)
    worksheet.set_late_fee(payload.late_fee)
    return worksheet


@router.post('/{order_id}/returns/preview')
def preview_return(
    order_id: int,
    payload: ReturnRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    _: None = Depends(verify_csrf),
):
    order = _load_scoped_order(db, principal, order_id)
    worksheet = _worksheet_for(order, payload)
    return {
        'order_id': order.id,
        'outcome': worksheet.preview_outcome(),
        'stats': worksheet.stats().to_dict(),
        'changed_items': [change.item_id for change in worksheet.changes()],
        'late_fee': worksheet.late_fee,
        'is_late': is_late(order),
    }


@router.post('/{order_id}/returns')
def submit_return(
    order_id: int,
    payload: ReturnRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    notifier: InvalidationManager = Depends(get_notifier),
    _: None = Depends(verify_csrf),
):
    order = _load_scoped_order(db, principal, order_id)
    worksheet = _worksheet_for(order, payload)
    result = process_return(
        db,
        order_id=order.id,
        changes=worksheet.changes(),
        late_fee=worksheet.late_fee,
        user_id=principal.id,
    )
    if result.applied:
        db.commit()
        _publish(notifier, order, ChangeKind.UPDATE, items=True)
    return result.to_dict()


def upi_payment_link(upi_id: str | None, payee: str | None, amount) -> str | None:
    if not upi_id:
        return None
    params = {'pa': upi_id, 'pn': payee or '', 'am': f'{amount}', 'cu': 'INR'}
    return 'upi://pay?' + urlencode(params)


@router.get('/{order_id}/invoice')
def render_invoice(
    order_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    templates: Jinja2Templates = Depends(get_templates),
):
    order = _load_scoped_order(db, principal, order_id)
    profile = get_staff(db, principal.id)
    company_name = profile.company_name or order.branch.name
    return templates.TemplateResponse(
        request,
        'invoice.html',
        {
            'order': order,
            'profile': profile,
            'company_name': company_name,
            'tax': TaxConfig.from_profile(profile),
            'upi_link': upi_payment_link(profile.upi_id, company_name, order.total_amount),
        },
    )
