from __future__ import annotations

import unittest
from datetime import timedelta
from decimal import Decimal

from factories import make_branch, make_customer, make_order, make_profile, make_session_factory
from rentdesk.errors import ValidationError
from rentdesk.models import OrderStatus
from rentdesk.services import dashboard_service
from rentdesk.services.return_service import ReturnWorksheet, process_return
from rentdesk.time_utils import utcnow


class DashboardServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.now = utcnow()
        self.branch = make_branch(self.db)
        self.other = make_branch(self.db, name='Mall Road')
        staff = make_profile(self.db, branch=self.branch)
        customer = make_customer(self.db)

        def order(invoice: str, **kwargs):
            kwargs.setdefault('branch', self.branch)
            return make_order(self.db, staff=staff, customer=customer, invoice_number=invoice, **kwargs)

        order('INV-1')
        order('INV-2', status=OrderStatus.SCHEDULED, start=self.now)
        order('INV-3', start=self.now - timedelta(days=3), end=self.now - timedelta(days=1))
        returned = order('INV-4', lines=[(1, '300')])
        order('INV-5', status=OrderStatus.CANCELLED)
        order('INV-6', branch=self.other)

        worksheet = ReturnWorksheet.from_order(returned)
        worksheet.mark_all_returned()
        process_return(
            self.db,
            order_id=returned.id,
            changes=worksheet.changes(),
            late_fee='0',
            user_id=staff.id,
            now=self.now,
        )

    def tearDown(self) -> None:
        self.db.close()

    def test_branch_stats(self) -> None:
        stats = dashboard_service.dashboard_stats(self.db, branch_id=self.branch.id, now=self.now)
        self.assertEqual(stats.scheduled_today, 1)
        self.assertEqual(stats.ongoing, 2)
        self.assertEqual(stats.late_returns, 1)
        self.assertEqual(stats.partial_returns, 0)
        self.assertEqual(stats.total_orders, 5)
        self.assertEqual(stats.total_completed, 1)
        self.assertEqual(stats.total_revenue, Decimal('1800.00'))
        self.assertEqual(stats.total_customers, 1)
        self.assertEqual(stats.today_collection, Decimal('300.00'))
        self.assertEqual(stats.today_completed, 1)
        self.assertEqual(stats.today_new_orders, 5)

    def test_all_branch_stats(self) -> None:
        stats = dashboard_service.dashboard_stats(self.db, branch_id=None, now=self.now)
        self.assertEqual(stats.ongoing, 3)
        self.assertEqual(stats.total_orders, 6)
        self.assertIn('today_collection', stats.to_dict())

    def test_reversed_range_is_rejected(self) -> None:
        today = self.now.date()
        with self.assertRaises(ValidationError):
            dashboard_service.dashboard_stats(
                self.db,
                branch_id=None,
                start=today,
                end=today - timedelta(days=1),
            )

    def test_recent_orders_are_scoped(self) -> None:
        recent = dashboard_service.recent_orders(self.db, branch_id=self.other.id)
        self.assertEqual([order.invoice_number for order in recent], ['INV-6'])
        self.assertEqual(len(dashboard_service.recent_orders(self.db, branch_id=None, limit=4)), 4)

    def test_calendar_lists_scheduled_orders(self) -> None:
        result = dashboard_service.calendar_orders(
            self.db,
            branch_id=self.branch.id,
            year=self.now.year,
            month=self.now.month,
        )
        day = self.now.date().isoformat()
        self.assertEqual(result['counts'], {day: {'scheduled': 1}})
        self.assertEqual([order.invoice_number for order in result['orders'][day]], ['INV-2'])
        with self.assertRaises(ValidationError):
            dashboard_service.month_bounds(2026, 13)

    def test_revenue_report(self) -> None:
        today = self.now.date()
        report = dashboard_service.revenue_report(
            self.db,
            branch_id=self.branch.id,
            start=today - timedelta(days=1),
            end=today,
        )
        self.assertEqual(len(report['days']), 2)
        self.assertEqual(report['days'][0]['orders'], 0)
        self.assertEqual(report['days'][1]['orders'], 4)
        self.assertEqual(report['days'][1]['completed'], 1)
        self.assertEqual(report['total_revenue'], Decimal('1800.00'))


if __name__ == '__main__':
    unittest.main()
