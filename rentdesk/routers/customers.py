from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from rentdesk.auth import Capability, Principal, get_current_principal, require_capability
from rentdesk.db import get_db
from rentdesk.dependencies import get_client_ip
from rentdesk.schemas import CustomerIn, CustomerOut, CustomerSummary, CustomerUpdate, OrderSummaryOut
from rentdesk.security.csrf import verify_csrf
from rentdesk.services import customer_service
from rentdesk.services.audit_service import log_audit

router = APIRouter(prefix='/customers', tags=['customers'])


def _customer_payload(customer, dues: dict[int, Decimal] | None = None) -> dict:
    payload = CustomerOut.model_validate(customer)
    if dues is not None:
        payload = payload.model_copy(update={'outstanding_dues': dues.get(customer.id, Decimal('0.00'))})
    return payload.model_dump(mode='json')


@router.get('')
def list_customers(
    search: str | None = None,
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    result = customer_service.list_customers(db, search=search, page=page, page_size=page_size)
    dues = customer_service.dues_by_customer(db, [customer.id for customer in result.data])
    return {
        'data': [_customer_payload(customer, dues) for customer in result.data],
        'total': result.total,
        'page': result.page,
        'page_size': result.page_size,
        'total_pages': result.total_pages,
    }


@router.get('/search')
def search_customers(q: str = '', db: Session = Depends(get_db), _: Principal = Depends(get_current_principal)):
    return [
        CustomerSummary.model_validate(customer).model_dump(mode='json')
        for customer in customer_service.search_customers(db, q)
    ]


@router.post('', status_code=status.HTTP_201_CREATED)
def create_customer(
    payload: CustomerIn,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
    __: None = Depends(verify_csrf),
):
    customer = customer_service.create_customer(db, **payload.model_dump())
    db.commit()
    return _customer_payload(customer)


@router.get('/{customer_id}')
def get_customer(customer_id: int, db: Session = Depends(get_db), _: Principal = Depends(get_current_principal)):
    customer = customer_service.get_customer(db, customer_id)
    return _customer_payload(customer, customer_service.dues_by_customer(db, [customer.id]))


@router.get('/{customer_id}/orders')
def list_customer_orders(
    customer_id: int,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
):
    return [
        OrderSummaryOut.model_validate(order).model_dump(mode='json')
        for order in customer_service.list_customer_orders(db, customer_id=customer_id)
    ]


@router.patch('/{customer_id}')
def update_customer(
    customer_id: int,
    payload: CustomerUpdate,
    db: Session = Depends(get_db),
    _: Principal = Depends(get_current_principal),
    __: None = Depends(verify_csrf),
):
    customer = customer_service.update_customer(db, customer_id=customer_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    return _customer_payload(customer)


@router.delete('/{customer_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_customer(
    customer_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_capability(Capability.DELETE_CUSTOMERS)),
    _: None = Depends(verify_csrf),
):
    customer_service.delete_customer(db, customer_id=customer_id)
    log_audit(
        db,
        actor_profile_id=principal.id,
        action='CUSTOMER_DELETED',
        ip=get_client_ip(request),
        metadata={'customer_id': customer_id},
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
