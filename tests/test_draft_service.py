from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from rentdesk.errors import ValidationError
from rentdesk.services.billing_service import TaxConfig
from rentdesk.services.draft_service import DraftRegistry, OrderDraft

NOW = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return NOW


def _ready_draft() -> OrderDraft:
    draft = OrderDraft(clock=_clock)
    draft.set_customer(7, 'Asha Menon', '9876543210')
    draft.set_invoice_number('GLAORD-20261019-0042')
    draft.add_item(photo_url='/media/order-items/a.jpg', quantity=1, price_per_day='200')
    return draft


class OrderDraftTests(unittest.TestCase):
    def test_new_draft_defaults_to_one_day_rental(self) -> None:
        draft = OrderDraft(clock=_clock)
        self.assertEqual(draft.start, NOW)
        self.assertEqual(draft.end, NOW + timedelta(days=1))
        self.assertEqual(draft.rental_days, 1)

    def test_line_total_follows_quantity_and_price_but_not_days(self) -> None:
        draft = OrderDraft(clock=_clock)
        item = draft.add_item(quantity=2, price_per_day='150')
        self.assertEqual(item.line_total, Decimal('300.00'))

        draft.update_item(0, days=5)
        self.assertEqual(item.days, 5)
        self.assertEqual(item.line_total, Decimal('300.00'))

        draft.update_item(0, quantity=3)
        self.assertEqual(item.line_total, Decimal('450.00'))
        draft.update_item(0, price_per_day='99.99')
        self.assertEqual(item.line_total, Decimal('299.97'))

    def test_new_items_are_listed_first(self) -> None:
        draft = OrderDraft(clock=_clock)
        draft.add_item(product_name='Crown')
        draft.add_item(product_name='Cape')
        self.assertEqual([item.product_name for item in draft.items], ['Cape', 'Crown'])

        removed = draft.remove_item(1)
        self.assertEqual(removed.product_name, 'Crown')
        with self.assertRaises(ValidationError):
            draft.remove_item(3)

    def test_unknown_item_fields_are_rejected(self) -> None:
        draft = OrderDraft(clock=_clock)
        with self.assertRaises(ValidationError):
            draft.add_item(colour='red')

    def test_null_numeric_fields_are_rejected(self) -> None:
        draft = OrderDraft(clock=_clock)
        item = draft.add_item(quantity=2, price_per_day='150')
        for name in ('quantity', 'days', 'price_per_day'):
            with self.subTest(field=name):
                with self.assertRaises(ValidationError) as ctx:
                    draft.update_item(0, **{name: None})
                self.assertEqual(ctx.exception.field, name)
        self.assertEqual((item.quantity, item.days), (2, 1))
        self.assertEqual(item.line_total, Decimal('300.00'))

    def test_totals_apply_tax_settings(self) -> None:
        draft = OrderDraft(clock=_clock)
        draft.add_item(quantity=3, price_per_day='100')
        draft.add_item(quantity=1, price_per_day='200')
        totals = draft.totals(TaxConfig(enabled=True, rate=Decimal('5')))
        self.assertEqual(totals.subtotal, Decimal('500.00'))
        self.assertEqual(totals.gst_amount, Decimal('25.00'))
        self.assertEqual(totals.grand_total, Decimal('525.00'))

    def test_dates_in_the_past_are_rejected(self) -> None:
        draft = OrderDraft(clock=_clock)
        with self.assertRaises(ValidationError) as ctx:
            draft.set_start(NOW - timedelta(hours=1))
        self.assertEqual(ctx.exception.field, 'start_date')
        draft.set_start(NOW - timedelta(seconds=30))

    def test_end_must_follow_start(self) -> None:
        draft = OrderDraft(clock=_clock)
        draft.set_start(NOW + timedelta(days=2))
        with self.assertRaises(ValidationError) as ctx:
            draft.set_end(NOW + timedelta(days=1))
        self.assertEqual(ctx.exception.field, 'end_date')

    def test_moving_start_past_end_pushes_end(self) -> None:
        draft = OrderDraft(clock=_clock)
        draft.set_start(NOW + timedelta(days=4))
        self.assertEqual(draft.end, NOW + timedelta(days=5))

    def test_changing_dates_updates_item_days(self) -> None:
        draft = OrderDraft(clock=_clock)
        item = draft.add_item(quantity=1, price_per_day='100')
        draft.set_end(NOW + timedelta(days=3))
        self.assertEqual(draft.rental_days, 3)
        self.assertEqual(item.days, 3)
        self.assertEqual(item.line_total, Decimal('100.00'))

    def test_validation_reports_first_problem_in_order(self) -> None:
        draft = OrderDraft(clock=_clock)
        with self.assertRaises(ValidationError) as ctx:
            draft.validate()
        self.assertEqual(ctx.exception.message, 'Please select a customer')

        draft.set_customer(7)
        draft.set_end(None)
        with self.assertRaises(ValidationError) as ctx:
            draft.validate()
        self.assertEqual(ctx.exception.field, 'end_date')

        draft.set_end(NOW + timedelta(days=1))
        with self.assertRaises(ValidationError) as ctx:
            draft.validate()
        self.assertEqual(ctx.exception.message, 'Please add at least one item')

        draft.add_item(quantity=1, price_per_day='100')
        with self.assertRaises(ValidationError) as ctx:
            draft.validate()
        self.assertEqual(ctx.exception.field, 'invoice_number')

        draft.set_invoice_number('  INV-1 ')
        self.assertEqual(draft.invoice_number, 'INV-1')
        with self.assertRaises(ValidationError) as ctx:
            draft.validate()
        self.assertEqual(ctx.exception.message, 'Item 1 is missing a photo')

    def test_ready_draft_validates(self) -> None:
        draft = _ready_draft()
        draft.validate()
        payload = draft.to_dict(TaxConfig())
        self.assertEqual(payload['grand_total'], Decimal('200.00'))
        self.assertEqual(payload['items'][0]['line_total'], Decimal('200.00'))

    def test_zero_quantity_fails_validation(self) -> None:
        draft = _ready_draft()
        draft.update_item(0, quantity=0)
        with self.assertRaises(ValidationError) as ctx:
            draft.validate()
        self.assertEqual(ctx.exception.field, 'quantity')


class DraftRegistryTests(unittest.TestCase):
    def test_drafts_are_scoped_to_session_token(self) -> None:
        registry = DraftRegistry(clock=_clock)
        first = registry.get('token-a')
        first.add_item(product_name='Sherwani')

        self.assertIs(registry.get('token-a'), first)
        self.assertEqual(registry.get('token-b').items, [])
        self.assertEqual(len(registry), 2)

        registry.clear('token-a')
        self.assertEqual(registry.get('token-a').items, [])
        registry.clear('never-created')

    def test_drafts_of_idle_sessions_are_dropped(self) -> None:
        clock = {'now': NOW}
        registry = DraftRegistry(clock=lambda: clock['now'], idle_ttl=timedelta(minutes=30))
        registry.get('token-a').add_item(product_name='Sherwani')
        clock['now'] = NOW + timedelta(minutes=20)
        registry.get('token-b')

        clock['now'] = NOW + timedelta(minutes=31)
        self.assertEqual(registry.evict_idle(), 1)
        self.assertEqual(len(registry), 1)
        self.assertEqual(registry.get('token-a').items, [])

        clock['now'] = NOW + timedelta(hours=2)
        registry.get('token-c')
        self.assertEqual(len(registry), 1)


if __name__ == '__main__':
    unittest.main()
