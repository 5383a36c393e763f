from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from rentdesk.config import settings
from rentdesk.errors import NotFoundError, PersistenceError, ValidationError
from rentdesk.models import Customer, IdProofType, Order, OrderStatus
from rentdesk.services.query_utils import Page, normalize_search_text, paginate, sanitize_phone

logger = logging.getLogger(__name__)

DUE_STATUSES = (OrderStatus.ACTIVE, OrderStatus.PENDING_RETURN)
_KYC_FIELDS = ('id_proof_type', 'id_proof_number', 'id_proof_front_url', 'id_proof_back_url')


def format_customer_number(customer_id: int) -> str:
    return f'{settings.customer_number_prefix}-{customer_id:05d}'


def get_customer(db: Session, customer_id: int) -> Customer:
    customer = db.get(Customer, customer_id)
    if not customer:
        raise NotFoundError('Customer not found')
    return customer


def _ensure_phone_available(db: Session, phone: str, *, exclude_id: int | None = None) -> None:
    query = select(Customer.id).where(Customer.phone == phone)
    if exclude_id is not None:
        query = query.where(Customer.id != exclude_id)
    if db.execute(query).first():
        raise PersistenceError('A customer with this phone number already exists')


def _clean_kyc(fields: dict) -> dict:
    cleaned = {}
    for key in _KYC_FIELDS:
        if key not in fields:
            continue
        value = fields[key]
        if key == 'id_proof_type':
            cleaned[key] = IdProofType(value) if value else None
        else:
            cleaned[key] = (value or '').strip() or None
    return cleaned


def create_customer(
    db: Session,
    *,
    name: str,
    phone: str,
    email: str | None = None,
    address: str | None = None,
    **kyc,
) -> Customer:
    clean_name = (name or '').strip()
    clean_phone = sanitize_phone(phone)
    if not clean_name:
        raise ValidationError('Customer name is required', field='name')
    if not clean_phone:
        raise ValidationError('Customer phone is required', field='phone')
    _ensure_phone_available(db, clean_phone)

    customer = Customer(
        name=clean_name,
        phone=clean_phone,
        email=(email or '').strip() or None,
        address=(address or '').strip() or None,
        is_active=True,
        **_clean_kyc(kyc),
    )
    db.add(customer)
    db.flush()
    customer.customer_number = format_customer_number(customer.id)
    db.flush()
    logger.info('Created customer %s', customer.customer_number)
    return customer


def update_customer(db: Session, *, customer_id: int, **fields) -> Customer:
    customer = get_customer(db, customer_id)
    if 'name' in fields:
        clean_name = (fields['name'] or '').strip()
        if not clean_name:
            raise ValidationError('Customer name is required', field='name')
        customer.name = clean_name
    if 'phone' in fields:
        clean_phone = sanitize_phone(fields['phone'])
        if not clean_phone:
            raise ValidationError('Customer phone is required', field='phone')
        _ensure_phone_available(db, clean_phone, exclude_id=customer.id)
        customer.phone = clean_phone
    for key in ('email', 'address'):
        if key in fields:
            setattr(customer, key, (fields[key] or '').strip() or None)
    if 'is_active' in fields and fields['is_active'] is not None:
        customer.is_active = bool(fields['is_active'])
    for key, value in _clean_kyc(fields).items():
        setattr(customer, key, value)
    db.flush()
    return customer


def delete_customer(db: Session, *, customer_id: int) -> None:
    customer = get_customer(db, customer_id)
    has_orders = db.execute(select(Order.id).where(Order.customer_id == customer_id).limit(1)).first()
    if has_orders:
        raise PersistenceError('Cannot delete a customer with existing orders')
    db.delete(customer)
    db.flush()


def dues_by_customer(db: Session, customer_ids: list[int]) -> dict[int, Decimal]:
    if not customer_ids:
        return {}
    rows = db.execute(
        select(Order.customer_id, func.coalesce(func.sum(Order.total_amount), 0))
        .where(Order.customer_id.in_(customer_ids), Order.status.in_(DUE_STATUSES))
        .group_by(Order.customer_id)
    ).all()
    return {customer_id: Decimal(str(total)) for customer_id, total in rows}


def list_customers(db: Session, *, search: str | None = None, page: int = 1, page_size: int = 20) -> Page:
    query = select(Customer).order_by(Customer.created_at.desc(), Customer.id.desc())
    term = normalize_search_text(search)
    if term:
        pattern = f'%{term}%'
        query = query.where(or_(Customer.name.ilike(pattern), Customer.phone.ilike(pattern)))
    return paginate(db, query, page=page, page_size=page_size)


def search_customers(db: Session, term: str, *, limit: int = 10) -> list[Customer]:
    clean = normalize_search_text(term)
    if len(clean) < 2:
        return []
    pattern = f'%{clean}%'
    return list(
        db.execute(
            select(Customer)
            .where(Customer.is_active.is_(True), or_(Customer.name.ilike(pattern), Customer.phone.ilike(pattern)))
            .order_by(Customer.name.asc())
            .limit(limit)
        ).scalars().all()
    )


def list_customer_orders(db: Session, *, customer_id: int) -> list[Order]:
    get_customer(db, customer_id)
    return list(
        db.execute(
            select(Order).where(Order.customer_id == customer_id).order_by(Order.created_at.desc(), Order.id.desc())
        ).unique().scalars().all()
    )
