from __future__ import annotations

import random
import unittest
from unittest import mock
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from factories import make_branch, make_customer, make_order, make_profile, make_session_factory
from rentdesk.errors import NotFoundError, PersistenceError, ValidationError
from rentdesk.models import Order, OrderReturnAudit, OrderStatus
from rentdesk.services import order_service
from rentdesk.services.billing_service import TaxConfig
from rentdesk.services.draft_service import OrderDraft
from rentdesk.time_utils import utcnow


def _draft(customer_id: int, *, invoice: str = 'GLAORD-20261019-0100', start: datetime | None = None) -> OrderDraft:
    draft = OrderDraft()
    if start is not None:
        draft.set_start(start)
    draft.set_customer(customer_id)
    draft.set_invoice_number(invoice)
    draft.add_item(photo_url='/media/order-items/x.jpg', product_name='Lehenga', quantity=2, price_per_day='250')
    return draft


class InvoiceNumberTests(unittest.TestCase):
    def test_invoice_number_format(self) -> None:
        number = order_service.generate_invoice_number(
            datetime(2026, 10, 19, tzinfo=timezone.utc),
            random.Random(4),
        )
        self.assertRegex(number, r'^GLAORD-20261019-\d{4}$')

    def test_initial_status_depends_on_start_day(self) -> None:
        now = datetime(2026, 10, 19, 23, 0, tzinfo=timezone.utc)
        self.assertEqual(order_service.initial_status(now + timedelta(minutes=30), now, 'UTC'), OrderStatus.ACTIVE)
        self.assertEqual(order_service.initial_status(now + timedelta(hours=2), now, 'UTC'), OrderStatus.SCHEDULED)

    def test_initial_status_uses_counter_calendar_day(self) -> None:
        # 19:00 UTC on the 19th and 01:00 UTC on the 20th are both the 20th in India.
        now = datetime(2026, 10, 19, 19, 0, tzinfo=timezone.utc)
        start = datetime(2026, 10, 20, 1, 0, tzinfo=timezone.utc)
        self.assertEqual(order_service.initial_status(start, now, 'Asia/Kolkata'), OrderStatus.ACTIVE)
        self.assertEqual(order_service.initial_status(start, now, 'UTC'), OrderStatus.SCHEDULED)

        # 13:30 UTC is 19:00 IST; 19:00 UTC is already the next day in India.
        now = datetime(2026, 10, 19, 13, 30, tzinfo=timezone.utc)
        start = datetime(2026, 10, 19, 19, 0, tzinfo=timezone.utc)
        self.assertEqual(order_service.initial_status(start, now, 'Asia/Kolkata'), OrderStatus.SCHEDULED)
        with mock.patch.object(order_service.settings, 'business_timezone', 'Asia/Kolkata'):
            self.assertEqual(order_service.initial_status(start, now), OrderStatus.SCHEDULED)


class OrderServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.branch = make_branch(self.db)
        self.staff = make_profile(self.db, branch=self.branch)
        self.customer = make_customer(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def _create(self, **kwargs) -> Order:
        return order_service.create_order(
            self.db,
            draft=kwargs.pop('draft', None) or _draft(self.customer.id),
            branch_id=self.branch.id,
            staff_id=self.staff.id,
            tax=kwargs.pop('tax', TaxConfig()),
            **kwargs,
        )

    def test_create_order_persists_items_and_totals(self) -> None:
        order = self._create(tax=TaxConfig(enabled=True, rate=Decimal('5')))
        self.assertEqual(order.status, OrderStatus.ACTIVE)
        self.assertEqual(len(order.items), 1)
        self.assertEqual(order.items[0].line_total, Decimal('500.00'))
        self.assertEqual(order.subtotal, Decimal('500.00'))
        self.assertEqual(order.gst_amount, Decimal('25.00'))
        self.assertEqual(order.total_amount, Decimal('525.00'))

    def test_future_start_schedules_order(self) -> None:
        draft = _draft(self.customer.id, start=utcnow() + timedelta(days=3))
        order = self._create(draft=draft)
        self.assertEqual(order.status, OrderStatus.SCHEDULED)
        self.assertEqual(order.end_date, (utcnow() + timedelta(days=4)).date())

    def test_duplicate_invoice_number_is_rejected(self) -> None:
        self._create()
        with self.assertRaises(PersistenceError) as ctx:
            self._create(draft=_draft(self.customer.id))
        self.assertIn('GLAORD-20261019-0100', ctx.exception.message)

    def test_invalid_draft_is_rejected_before_writing(self) -> None:
        draft = _draft(self.customer.id)
        draft.items[0].photo_url = None
        with self.assertRaises(ValidationError):
            self._create(draft=draft)
        self.assertEqual(self.db.execute(select(Order)).scalars().all(), [])

    def test_unknown_customer(self) -> None:
        with self.assertRaises(NotFoundError):
            self._create(draft=_draft(4242))

    def test_invoice_edit_is_allowed_after_window(self) -> None:
        order = make_order(
            self.db,
            branch=self.branch,
            staff=self.staff,
            customer=self.customer,
            start=utcnow() - timedelta(minutes=30),
        )
        updated = order_service.update_order(
            self.db,
            order_id=order.id,
            invoice_number='GLAORD-20261019-7777',
            draft=None,
            tax=TaxConfig(),
            actor_id=self.staff.id,
        )
        self.assertEqual(updated.invoice_number, 'GLAORD-20261019-7777')
        self.db.flush()
        audit = self.db.execute(select(OrderReturnAudit).where(OrderReturnAudit.order_id == order.id)).scalar_one()
        self.assertEqual(audit.action, 'invoice_updated')

    def test_full_edit_is_rejected_after_window(self) -> None:
        order = make_order(
            self.db,
            branch=self.branch,
            staff=self.staff,
            customer=self.customer,
            start=utcnow() - timedelta(minutes=11),
        )
        draft = OrderDraft()
        draft.load_order(order)
        with self.assertRaises(ValidationError) as ctx:
            order_service.update_order(
                self.db,
                order_id=order.id,
                invoice_number=order.invoice_number,
                draft=draft,
                tax=TaxConfig(),
                actor_id=self.staff.id,
            )
        self.assertIn('10 minutes', ctx.exception.message)

    def test_full_edit_replaces_items_inside_window(self) -> None:
        order = make_order(
            self.db,
            branch=self.branch,
            staff=self.staff,
            customer=self.customer,
            start=utcnow() - timedelta(minutes=2),
        )
        draft = OrderDraft()
        draft.load_order(order)
        self.assertEqual(len(draft.items), 2)
        draft.items = []
        draft.add_item(photo_url='/media/order-items/new.jpg', quantity=4, price_per_day='75')

        updated = order_service.update_order(
            self.db,
            order_id=order.id,
            invoice_number=order.invoice_number,
            draft=draft,
            tax=TaxConfig(),
            actor_id=self.staff.id,
        )
        self.assertEqual(len(updated.items), 1)
        self.assertEqual(updated.subtotal, Decimal('300.00'))
        self.assertEqual(updated.total_amount, Decimal('300.00'))

    def test_invoice_cannot_collide_on_update(self) -> None:
        make_order(self.db, branch=self.branch, staff=self.staff, customer=self.customer, invoice_number='INV-A')
        second = make_order(self.db, branch=self.branch, staff=self.staff, customer=self.customer, invoice_number='INV-B')
        with self.assertRaises(PersistenceError):
            order_service.update_order(
                self.db,
                order_id=second.id,
                invoice_number='INV-A',
                draft=None,
                tax=TaxConfig(),
                actor_id=None,
            )
        with self.assertRaises(ValidationError):
            order_service.update_order(
                self.db,
                order_id=second.id,
                invoice_number='   ',
                draft=None,
                tax=TaxConfig(),
                actor_id=None,
            )

    def test_start_and_cancel(self) -> None:
        start = utcnow() + timedelta(days=2)
        scheduled = make_order(
            self.db,
            branch=self.branch,
            staff=self.staff,
            customer=self.customer,
            status=OrderStatus.SCHEDULED,
            start=start,
            invoice_number='INV-S',
        )
        now = utcnow()
        started = order_service.start_rental(self.db, order_id=scheduled.id, actor_id=self.staff.id, now=now)
        self.assertEqual(started.status, OrderStatus.ACTIVE)
        self.assertEqual(started.start_datetime, now)
        with self.assertRaises(ValidationError):
            order_service.start_rental(self.db, order_id=scheduled.id, actor_id=self.staff.id)

        cancelled = order_service.cancel_order(self.db, order_id=scheduled.id, actor_id=self.staff.id)
        self.assertEqual(cancelled.status, OrderStatus.CANCELLED)
        with self.assertRaises(ValidationError):
            order_service.cancel_order(self.db, order_id=scheduled.id, actor_id=self.staff.id)

    def test_delete_returns_photo_urls(self) -> None:
        order = make_order(self.db, branch=self.branch, staff=self.staff, customer=self.customer)
        urls = order_service.delete_order(self.db, order_id=order.id)
        self.assertEqual(urls, ['/media/order-items/photo-1.jpg', '/media/order-items/photo-2.jpg'])
        with self.assertRaises(NotFoundError):
            order_service.get_order(self.db, order.id)

    def test_list_orders_filters_by_branch_status_and_search(self) -> None:
        other_branch = make_branch(self.db, name='City Centre')
        other_customer = make_customer(self.db, name='Ravi Kumar', phone='9000011111')
        make_order(self.db, branch=self.branch, staff=self.staff, customer=self.customer, invoice_number='INV-1')
        make_order(
            self.db,
            branch=self.branch,
            staff=self.staff,
            customer=other_customer,
            invoice_number='INV-2',
            status=OrderStatus.COMPLETED,
        )
        make_order(self.db, branch=other_branch, staff=self.staff, customer=self.customer, invoice_number='INV-3')

        self.assertEqual(order_service.list_orders(self.db, branch_id=None).total, 3)
        self.assertEqual(order_service.list_orders(self.db, branch_id=self.branch.id).total, 2)
        completed = order_service.list_orders(self.db, branch_id=self.branch.id, status=OrderStatus.COMPLETED)
        self.assertEqual([order.invoice_number for order in completed.data], ['INV-2'])
        found = order_service.list_orders(self.db, branch_id=None, search='ravi')
        self.assertEqual([order.invoice_number for order in found.data], ['INV-2'])
        paged = order_service.list_orders(self.db, branch_id=None, page=2, page_size=2)
        self.assertEqual(len(paged.data), 1)
        self.assertEqual(paged.total_pages, 2)

    def test_status_jobs(self) -> None:
        now = utcnow()
        overdue = make_order(
            self.db,
            branch=self.branch,
            staff=self.staff,
            customer=self.customer,
            start=now - timedelta(days=3),
            end=now - timedelta(days=1),
            invoice_number='INV-OVERDUE',
        )
        running = make_order(self.db, branch=self.branch, staff=self.staff, customer=self.customer, invoice_number='INV-OK')
        expired = make_order(
            self.db,
            branch=self.branch,
            staff=self.staff,
            customer=self.customer,
            status=OrderStatus.SCHEDULED,
            start=now - timedelta(days=1),
            invoice_number='INV-EXPIRED',
        )

        self.assertEqual(order_service.refresh_overdue_orders(self.db, now=now), 1)
        self.assertEqual(order_service.cancel_expired_scheduled_orders(self.db, now=now), 1)
        self.db.expire_all()
        self.assertEqual(self.db.get(Order, overdue.id).status, OrderStatus.PENDING_RETURN)
        self.assertEqual(self.db.get(Order, running.id).status, OrderStatus.ACTIVE)
        self.assertEqual(self.db.get(Order, expired.id).status, OrderStatus.CANCELLED)


if __name__ == '__main__':
    unittest.main()
