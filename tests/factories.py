from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.pool import StaticPool

from rentdesk.db import build_engine, build_session_factory
from rentdesk.models import Base, Branch, Customer, Order, OrderItem, OrderStatus, Profile, StaffRole
from rentdesk.security.passwords import hash_password
from rentdesk.services.billing_service import TaxConfig, compute_totals, line_total
from rentdesk.time_utils import utcnow

DEFAULT_PASSWORD = 'secret123'


def make_session_factory():
    engine = build_engine('sqlite://', poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return build_session_factory(engine)


def make_branch(db, name: str = 'Glanz Costumes Collection', **fields) -> Branch:
    branch = Branch(name=name, address=fields.pop('address', 'Main Road'), is_active=True, **fields)
    db.add(branch)
    db.flush()
    return branch


def make_profile(
    db,
    username: str = 'counter1',
    *,
    role: StaffRole = StaffRole.STAFF,
    branch: Branch | None = None,
    password: str = DEFAULT_PASSWORD,
    **fields,
) -> Profile:
    profile = Profile(
        username=username,
        password_hash=hash_password(password),
        role=role,
        branch_id=branch.id if branch else None,
        full_name=fields.pop('full_name', username.title()),
        phone=fields.pop('phone', ''),
        is_active=fields.pop('is_active', True),
        **fields,
    )
    db.add(profile)
    db.flush()
    return profile


def make_customer(db, name: str = 'Asha Menon', phone: str = '9876543210', **fields) -> Customer:
    customer = Customer(name=name, phone=phone, is_active=True, **fields)
    db.add(customer)
    db.flush()
    return customer


def make_order(
    db,
    *,
    branch: Branch,
    staff: Profile,
    customer: Customer,
    lines: list[tuple[int, str]] = ((3, '100'), (1, '200')),
    status: OrderStatus = OrderStatus.ACTIVE,
    invoice_number: str = 'GLAORD-20261019-0001',
    start: datetime | None = None,
    end: datetime | None = None,
    tax: TaxConfig | None = None,
) -> Order:
    start = start or utcnow() - timedelta(minutes=1)
    end = end or start + timedelta(days=2)
    items = [
        OrderItem(
            product_name=f'Costume {position}',
            photo_url=f'/media/order-items/photo-{position}.jpg',
            quantity=quantity,
            price_per_day=Decimal(price),
            days=2,
            line_total=line_total(quantity, Decimal(price)),
        )
        for position, (quantity, price) in enumerate(lines, start=1)
    ]
    totals = compute_totals((item.line_total for item in items), tax or TaxConfig())
    order = Order(
        branch_id=branch.id,
        staff_id=staff.id,
        customer_id=customer.id,
        invoice_number=invoice_number,
        booking_date=start,
        start_date=start.date(),
        end_date=end.date(),
        start_datetime=start,
        end_datetime=end,
        status=status,
        subtotal=totals.subtotal,
        gst_amount=totals.gst_amount,
        total_amount=totals.grand_total,
        items=items,
    )
    db.add(order)
    db.flush()
    return order
