from __future__ import annotations

import unittest
from decimal import Decimal

from rentdesk.errors import ValidationError
from rentdesk.services.billing_service import (
    TaxConfig,
    compute_gst,
    compute_totals,
    line_total,
    order_total,
    to_money,
    validate_gst_rate,
)


class BillingServiceTests(unittest.TestCase):
    def test_gst_exclusive_is_added_on_top(self) -> None:
        totals = compute_totals([Decimal('1000')], TaxConfig(enabled=True, rate=Decimal('5'), included=False))
        self.assertEqual(totals.subtotal, Decimal('1000.00'))
        self.assertEqual(totals.gst_amount, Decimal('50.00'))
        self.assertEqual(totals.grand_total, Decimal('1050.00'))

    def test_gst_inclusive_is_backed_out_of_subtotal(self) -> None:
        totals = compute_totals([Decimal('1050')], TaxConfig(enabled=True, rate=Decimal('5'), included=True))
        self.assertEqual(totals.gst_amount, Decimal('50.00'))
        self.assertEqual(totals.grand_total, Decimal('1050.00'))

    def test_disabled_gst_leaves_total_equal_to_subtotal(self) -> None:
        totals = compute_totals([Decimal('300'), Decimal('200')], TaxConfig(enabled=False, rate=Decimal('18')))
        self.assertEqual(totals.gst_amount, Decimal('0.00'))
        self.assertEqual(totals.grand_total, Decimal('500.00'))

    def test_gst_rounds_half_up_to_paise(self) -> None:
        gst = compute_gst(Decimal('99.90'), TaxConfig(enabled=True, rate=Decimal('5')))
        self.assertEqual(gst, Decimal('5.00'))  # 4.995
        inclusive = compute_gst(Decimal('100.00'), TaxConfig(enabled=True, rate=Decimal('18'), included=True))
        self.assertEqual(inclusive, Decimal('15.25'))

    def test_line_total_ignores_rental_days(self) -> None:
        self.assertEqual(line_total(3, Decimal('100')), Decimal('300.00'))
        self.assertEqual(line_total(2, Decimal('49.995')), Decimal('100.00'))

    def test_order_total_adds_late_and_damage_fees(self) -> None:
        totals = compute_totals([Decimal('500')], TaxConfig())
        total = order_total(totals, late_fee=Decimal('100'), damage_fee_total=Decimal('50'))
        self.assertEqual(total, Decimal('650.00'))

    def test_to_money_rejects_garbage(self) -> None:
        self.assertEqual(to_money(None), Decimal('0.00'))
        self.assertEqual(to_money('12.345'), Decimal('12.35'))
        with self.assertRaises(ValidationError):
            to_money('abc')
        with self.assertRaises(ValidationError):
            to_money('NaN')

    def test_validate_gst_rate_bounds(self) -> None:
        self.assertEqual(validate_gst_rate('18'), Decimal('18.00'))
        self.assertEqual(validate_gst_rate(0), Decimal('0.00'))
        for bad in (None, '', '-1', '100.01'):
            with self.subTest(rate=bad):
                with self.assertRaises(ValidationError) as ctx:
                    validate_gst_rate(bad)
                self.assertEqual(ctx.exception.field, 'gst_rate')


if __name__ == '__main__':
    unittest.main()
