from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
IdType = BigInteger().with_variant(Integer(), 'sqlite')
Money = Numeric(12, 2)


class Base(DeclarativeBase):
    pass


class StaffRole(str, Enum):
    SUPER_ADMIN = 'super_admin'
    BRANCH_ADMIN = 'branch_admin'
    STAFF = 'staff'


class OrderStatus(str, Enum):
    SCHEDULED = 'scheduled'
    ACTIVE = 'active'
    PENDING_RETURN = 'pending_return'
    PARTIALLY_RETURNED = 'partially_returned'
    COMPLETED = 'completed'
    FLAGGED = 'flagged'
    CANCELLED = 'cancelled'


class ItemReturnStatus(str, Enum):
    NOT_YET_RETURNED = 'not_yet_returned'
    RETURNED = 'returned'
    MISSING = 'missing'


class IdProofType(str, Enum):
    AADHAR = 'aadhar'
    PASSPORT = 'passport'
    VOTER = 'voter'
    OTHERS = 'others'


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


class Branch(Base):
    __tablename__ = 'branches'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    phone: Mapped[str | None] = mapped_column(Text)
    logo_url: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Profile(Base):
    __tablename__ = 'profiles'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[StaffRole] = mapped_column(_enum(StaffRole, 'staff_role'), nullable=False, default=StaffRole.STAFF)
    branch_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('branches.id', ondelete='SET NULL'))
    full_name: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    phone: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    gst_number: Mapped[str | None] = mapped_column(Text)
    gst_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    gst_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal('5.00'), server_default='5.00')
    gst_included: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    upi_id: Mapped[str | None] = mapped_column(Text)
    company_name: Mapped[str | None] = mapped_column(Text)
    company_address: Mapped[str | None] = mapped_column(Text)
    company_logo_url: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    branch: Mapped[Branch | None] = relationship(lazy='joined')


class Customer(Base):
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    customer_number: Mapped[str | None] = mapped_column(Text, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    email: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    id_proof_type: Mapped[IdProofType | None] = mapped_column(_enum(IdProofType, 'id_proof_type'))
    id_proof_number: Mapped[str | None] = mapped_column(Text)
    id_proof_front_url: Mapped[str | None] = mapped_column(Text)
    id_proof_back_url: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def is_verified(self) -> bool:
        return any([self.id_proof_number, self.id_proof_front_url, self.id_proof_back_url])


class Order(Base):
    __tablename__ = 'orders'
    __table_args__ = (
        CheckConstraint('late_fee >= 0', name='orders_late_fee_check'),
        CheckConstraint('end_date >= start_date', name='orders_date_range_check'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    branch_id: Mapped[int] = mapped_column(IdType, ForeignKey('branches.id', ondelete='CASCADE'), nullable=False)
    staff_id: Mapped[int] = mapped_column(IdType, ForeignKey('profiles.id'), nullable=False)
    customer_id: Mapped[int] = mapped_column(IdType, ForeignKey('customers.id'), nullable=False)
    invoice_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    booking_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_datetime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end_datetime: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[OrderStatus] = mapped_column(
        _enum(OrderStatus, 'order_status'), nullable=False, default=OrderStatus.ACTIVE
    )
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    gst_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    late_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    damage_fee_total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    late_returned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    items: Mapped[list[OrderItem]] = relationship(
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderItem.id',
    )
    customer: Mapped[Customer] = relationship(lazy='joined')
    branch: Mapped[Branch] = relationship(lazy='joined')
    staff: Mapped[Profile] = relationship(lazy='joined')


class OrderItem(Base):
    __tablename__ = 'order_items'
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='order_items_quantity_check'),
        CheckConstraint(
            'returned_quantity >= 0 AND returned_quantity <= quantity',
            name='order_items_returned_quantity_check',
        ),
        CheckConstraint('damage_fee >= 0', name='order_items_damage_fee_check'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    order_id: Mapped[int] = mapped_column(IdType, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    photo_url: Mapped[str | None] = mapped_column(Text)
    product_name: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    price_per_day: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    days: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')
    line_total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'))
    returned_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    return_status: Mapped[ItemReturnStatus] = mapped_column(
        _enum(ItemReturnStatus, 'item_return_status'),
        nullable=False,
        default=ItemReturnStatus.NOT_YET_RETURNED,
    )
    actual_return_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    late_return: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    missing_note: Mapped[str | None] = mapped_column(Text)
    damage_fee: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal('0'), server_default='0')
    damage_description: Mapped[str | None] = mapped_column(Text)

    order: Mapped[Order] = relationship(back_populates='items')


class OrderReturnAudit(Base):
    __tablename__ = 'order_return_audit'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    order_id: Mapped[int] = mapped_column(IdType, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    order_item_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('order_items.id', ondelete='SET NULL'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    previous_status: Mapped[str | None] = mapped_column(Text)
    new_status: Mapped[str | None] = mapped_column(Text)
    user_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('profiles.id', ondelete='SET NULL'))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    attempted_username: Mapped[str] = mapped_column(Text, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    profile_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('profiles.id', ondelete='SET NULL'))
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    actor_profile_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('profiles.id', ondelete='SET NULL'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    order_id: Mapped[int | None] = mapped_column(IdType)
    ip: Mapped[str | None] = mapped_column(String(64))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    profile_id: Mapped[int] = mapped_column(IdType, ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
