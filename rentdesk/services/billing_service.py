from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from rentdesk.errors import ValidationError

CENT = Decimal('0.01')
HUNDRED = Decimal('100')


@dataclass(frozen=True)
class TaxConfig:
    enabled: bool = False
    rate: Decimal = Decimal('5.00')
    included: bool = False

    @classmethod
    def from_profile(cls, profile) -> TaxConfig:
        return cls(
            enabled=bool(profile.gst_enabled),
            rate=to_money(profile.gst_rate if profile.gst_rate is not None else Decimal('5.00')),
            included=bool(profile.gst_included),
        )


@dataclass(frozen=True)
class BillingTotals:
    subtotal: Decimal
    gst_amount: Decimal
    grand_total: Decimal


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    if value is None or value == '':
        return Decimal('0.00')
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(f'Invalid amount: {value}') from exc
    if not amount.is_finite():
        raise ValidationError(f'Invalid amount: {value}')
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(quantity: int, price_per_day: Decimal) -> Decimal:
    # Rental days are recorded on the line but never multiplied in.
    return to_money(Decimal(int(quantity)) * to_money(price_per_day))


def compute_gst(subtotal: Decimal, tax: TaxConfig) -> Decimal:
    if not tax.enabled:
        return Decimal('0.00')
    rate = Decimal(tax.rate) / HUNDRED
    if tax.included:
        return to_money(subtotal - subtotal / (Decimal('1') + rate))
    return to_money(subtotal * rate)


def compute_totals(line_totals: Iterable[Decimal], tax: TaxConfig) -> BillingTotals:
    subtotal = to_money(sum((to_money(value) for value in line_totals), Decimal('0')))
    gst_amount = compute_gst(subtotal, tax)
    if tax.enabled and not tax.included:
        grand_total = subtotal + gst_amount
    else:
        grand_total = subtotal
    return BillingTotals(subtotal=subtotal, gst_amount=gst_amount, grand_total=to_money(grand_total))


def order_total(
    totals: BillingTotals,
    *,
    late_fee: Decimal = Decimal('0'),
    damage_fee_total: Decimal = Decimal('0'),
) -> Decimal:
    return to_money(totals.grand_total + to_money(late_fee) + to_money(damage_fee_total))


def validate_gst_rate(value: Decimal | int | float | str | None) -> Decimal:
    if value is None or value == '':
        raise ValidationError('GST rate is required', field='gst_rate')
    rate = to_money(value)
    if rate < 0 or rate > HUNDRED:
        raise ValidationError('GST rate must be between 0 and 100', field='gst_rate')
    return rate
