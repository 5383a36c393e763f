from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from rentdesk.models import IdProofType, ItemReturnStatus, OrderStatus, StaffRole


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    username: str
    password: str


class BranchIn(BaseModel):
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    logo_url: Optional[str] = None
    is_active: Optional[bool] = None


class BranchOut(ORMModel):
    id: int
    name: str
    address: str
    phone: Optional[str] = None
    logo_url: Optional[str] = None
    is_active: bool
    is_main: bool = False


class BranchSummary(ORMModel):
    id: int
    name: str


class ProfileOut(ORMModel):
    id: int
    username: str
    role: StaffRole
    branch_id: Optional[int] = None
    branch: Optional[BranchSummary] = None
    full_name: str
    phone: str
    gst_enabled: bool
    gst_rate: Decimal
    gst_included: bool
    gst_number: Optional[str] = None
    upi_id: Optional[str] = None
    company_name: Optional[str] = None
    company_address: Optional[str] = None
    company_logo_url: Optional[str] = None
    is_active: bool


class ProfileSettingsIn(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    gst_enabled: Optional[bool] = None
    gst_rate: Optional[Decimal] = None
    gst_included: Optional[bool] = None
    gst_number: Optional[str] = None
    upi_id: Optional[str] = None
    company_name: Optional[str] = None
    company_address: Optional[str] = None
    company_logo_url: Optional[str] = None


class PasswordChangeIn(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


class StaffCreate(BaseModel):
    username: str
    password: str
    role: StaffRole = StaffRole.STAFF
    full_name: str
    phone: str = ''
    branch_id: Optional[int] = None


class StaffUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[StaffRole] = None
    branch_id: Optional[int] = None
    new_password: Optional[str] = None


class StaffActiveIn(BaseModel):
    active: bool


class CustomerIn(BaseModel):
    name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    id_proof_type: Optional[IdProofType] = None
    id_proof_number: Optional[str] = None
    id_proof_front_url: Optional[str] = None
    id_proof_back_url: Optional[str] = None


class CustomerUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    is_active: Optional[bool] = None
    id_proof_type: Optional[IdProofType] = None
    id_proof_number: Optional[str] = None
    id_proof_front_url: Optional[str] = None
    id_proof_back_url: Optional[str] = None


class CustomerSummary(ORMModel):
    id: int
    customer_number: Optional[str] = None
    name: str
    phone: str


class CustomerOut(CustomerSummary):
    email: Optional[str] = None
    address: Optional[str] = None
    id_proof_type: Optional[IdProofType] = None
    id_proof_number: Optional[str] = None
    id_proof_front_url: Optional[str] = None
    id_proof_back_url: Optional[str] = None
    is_active: bool
    is_verified: bool
    created_at: Optional[datetime] = None
    outstanding_dues: Decimal = Decimal('0.00')


class OrderItemOut(ORMModel):
    id: int
    photo_url: Optional[str] = None
    product_name: Optional[str] = None
    quantity: int
    price_per_day: Decimal
    days: int
    line_total: Decimal
    returned_quantity: int
    return_status: ItemReturnStatus
    actual_return_date: Optional[datetime] = None
    late_return: bool
    missing_note: Optional[str] = None
    damage_fee: Decimal
    damage_description: Optional[str] = None


class OrderSummaryOut(ORMModel):
    id: int
    branch_id: int
    invoice_number: str
    status: OrderStatus
    start_date: date
    end_date: date
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    total_amount: Decimal
    created_at: Optional[datetime] = None
    customer: Optional[CustomerSummary] = None
    branch: Optional[BranchSummary] = None


class OrderOut(OrderSummaryOut):
    staff_id: int
    customer_id: int
    booking_date: Optional[datetime] = None
    subtotal: Decimal
    gst_amount: Decimal
    late_fee: Decimal
    damage_fee_total: Decimal
    late_returned: bool
    completed_at: Optional[datetime] = None
    items: list[OrderItemOut] = Field(default_factory=list)


class DraftCustomerIn(BaseModel):
    customer_id: int
    name: Optional[str] = None
    phone: Optional[str] = None


class DraftDatesIn(BaseModel):
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None


class DraftInvoiceIn(BaseModel):
    invoice_number: str


class DraftItemIn(BaseModel):
    photo_url: Optional[str] = None
    product_name: Optional[str] = None
    quantity: int = 1
    price_per_day: Decimal = Decimal('0')


class DraftItemUpdate(BaseModel):
    photo_url: Optional[str] = None
    product_name: Optional[str] = None
    quantity: Optional[int] = None
    price_per_day: Optional[Decimal] = None
    days: Optional[int] = None


class OrderUpdateIn(BaseModel):
    invoice_number: str
    customer_id: Optional[int] = None
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    items: Optional[list[DraftItemIn]] = None

    @property
    def is_full_edit(self) -> bool:
        return any(
            value is not None
            for value in (self.customer_id, self.start_datetime, self.end_datetime, self.items)
        )


class ReturnItemIn(BaseModel):
    item_id: int
    returned_quantity: int = 0
    damage_fee: Decimal = Decimal('0')
    damage_description: Optional[str] = None
    missing: bool = False
    missing_note: Optional[str] = None


class ReturnRequest(BaseModel):
    items: list[ReturnItemIn] = Field(default_factory=list)
    late_fee: Decimal = Decimal('0')
    mark_all_returned: bool = False
