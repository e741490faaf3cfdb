"""
Reports Tests
=============

Tests for:
1. Week and range boundaries (Sunday weeks, local days)
2. Trend arithmetic
3. Admin overview, daily trend and courier leaderboard
4. Business summary
5. Report API permissions
"""

from datetime import timedelta
from decimal import Decimal

from django.test import SimpleTestCase, TestCase
from rest_framework import status
from rest_framework.test import APIClient

from core.models import User
from logistics.models import DeliveryStatus
from logistics.services import lifecycle
from logistics.tests.helpers import (
    make_admin,
    make_business,
    make_courier,
    post_delivery,
    tuesday_at,
)
from reports.services import ReportService, range_bounds, trend, week_bounds


def deliver(delivery, courier, when):
    lifecycle.accept_delivery(delivery.pk, courier, now=when)
    lifecycle.advance_delivery(delivery.pk, courier, DeliveryStatus.PICKED_UP, now=when)
    return lifecycle.advance_delivery(delivery.pk, courier, DeliveryStatus.DELIVERED, now=when)


class TestDateHelpers(SimpleTestCase):

    def test_week_starts_on_sunday(self):
        prev_start, this_start, next_start = week_bounds(tuesday_at(12))

        self.assertEqual(this_start, tuesday_at(0) - timedelta(days=2))
        self.assertEqual(prev_start, this_start - timedelta(days=7))
        self.assertEqual(next_start, this_start + timedelta(days=7))

    def test_sunday_and_saturday_share_a_week(self):
        sunday = tuesday_at(9) - timedelta(days=2)
        saturday = tuesday_at(23) + timedelta(days=4)

        self.assertEqual(week_bounds(sunday)[1], week_bounds(saturday)[1])
        self.assertEqual(week_bounds(tuesday_at(9) + timedelta(days=5))[1], week_bounds(saturday)[1] + timedelta(days=7))

    def test_range_bounds(self):
        now = tuesday_at(12)
        today = now.date()

        self.assertEqual(range_bounds('week', now), (today - timedelta(days=6), today))
        self.assertEqual(range_bounds('month', now), (today.replace(day=1), today))
        self.assertEqual(range_bounds('quarter', now), (today - timedelta(days=90), today))

    def test_trend(self):
        self.assertEqual(trend(6, 4), {'current': 6, 'previous': 4, 'diff': 2, 'pct': 50.0, 'up': True})
        self.assertEqual(trend(3, 4)['pct'], -25.0)
        self.assertFalse(trend(3, 4)['up'])

    def test_trend_without_previous(self):
        result = trend(5, 0)
        self.assertIsNone(result['pct'])
        self.assertTrue(result['up'])


class ReportDataMixin:
    """Two couriers, one idle courier, one business, deliveries over two weeks."""

    def build(self):
        self.shop = make_business()
        self.alice = make_courier(email='alice@example.com', name='Alice')
        self.bob = make_courier(email='bob@example.com', name='Bob')
        self.idle = make_courier(email='idle@example.com', name='Idle')

        # Everyone joined long before the report weeks
        User.objects.update(date_joined=tuesday_at(8) - timedelta(days=60))

        monday = tuesday_at(10) - timedelta(days=1)
        last_thursday = tuesday_at(10) - timedelta(days=5)

        self.today_a = deliver(post_delivery(self.shop, now=tuesday_at(10)), self.alice, tuesday_at(11))
        self.today_b = deliver(post_delivery(self.shop, now=tuesday_at(10, 30)), self.bob, tuesday_at(11))
        self.yesterday = deliver(post_delivery(self.shop, now=monday), self.alice, monday)
        self.last_week = deliver(post_delivery(self.shop, now=last_thursday), self.alice, last_thursday)

        self.in_progress = post_delivery(self.shop, now=tuesday_at(11))
        lifecycle.accept_delivery(self.in_progress.pk, self.bob, now=tuesday_at(11))
        self.open = post_delivery(self.shop, now=tuesday_at(11, 30))


class TestAdminReports(ReportDataMixin, TestCase):

    def setUp(self):
        self.build()

    def test_status_breakdown_has_every_status(self):
        self.assertEqual(ReportService.status_breakdown(), {
            'posted': 1, 'accepted': 1, 'picked_up': 0, 'delivered': 4,
        })

    def test_overview(self):
        overview = ReportService.admin_overview(now=tuesday_at(12))

        # this week: 3 delivered + 2 open; previous week: 1
        self.assertEqual(overview['deliveries']['current'], 5)
        self.assertEqual(overview['deliveries']['previous'], 1)
        self.assertEqual(overview['deliveries']['pct'], 400.0)
        self.assertEqual(overview['couriers']['current'], 3)
        self.assertEqual(overview['couriers']['previous'], 3)
        self.assertEqual(overview['businesses']['current'], 1)
        self.assertEqual(overview['active_deliveries'], 1)

    def test_overview_average_income(self):
        overview = ReportService.admin_overview(now=tuesday_at(12))

        this_week_total = self.today_a.payment + self.today_b.payment + self.yesterday.payment
        self.assertEqual(
            overview['avg_courier_income']['current'],
            (this_week_total / 2).quantize(Decimal('0.01')),
        )
        self.assertEqual(overview['avg_courier_income']['previous'], self.last_week.payment)

    def test_daily_trend_fills_empty_days(self):
        result = ReportService.daily_trend('week', now=tuesday_at(12))
        days = {d['date']: d for d in result['days']}

        self.assertEqual(len(result['days']), 7)
        self.assertEqual(result['to'], '2026-01-06')

        today = days['2026-01-06']
        self.assertEqual(today['deliveries'], 2)
        self.assertEqual(today['active_couriers'], 2)
        self.assertEqual(today['avg_deliveries'], 1.0)
        self.assertEqual(today['income'], self.today_a.payment + self.today_b.payment)

        self.assertEqual(days['2026-01-05']['deliveries'], 1)
        self.assertEqual(days['2026-01-03']['deliveries'], 0)
        self.assertEqual(days['2026-01-03']['avg_income'], Decimal('0.00'))

    def test_daily_trend_rejects_unknown_range(self):
        with self.assertRaises(ValueError):
            ReportService.daily_trend('decade', now=tuesday_at(12))

    def test_leaderboard_orders_by_balance(self):
        board = ReportService.courier_leaderboard()

        self.assertEqual([row['email'] for row in board], ['alice@example.com', 'bob@example.com', 'idle@example.com'])
        self.assertEqual(board[0]['rank'], 1)
        self.assertEqual(board[0]['delivered'], 3)
        self.assertEqual(board[1]['in_progress'], 1)
        self.assertEqual(board[2]['balance'], Decimal('0.00'))

    def test_leaderboard_limit(self):
        self.assertEqual(len(ReportService.courier_leaderboard(limit=2)), 2)


class TestBusinessSummary(ReportDataMixin, TestCase):

    def setUp(self):
        self.build()

    def test_summary(self):
        summary = ReportService.business_summary(self.shop, now=tuesday_at(12))

        self.assertEqual(summary['total'], 6)
        self.assertEqual(summary['completed'], 4)
        self.assertEqual(summary['in_progress'], 1)
        self.assertEqual(summary['status_breakdown']['posted'], 1)

    def test_spend_counts_delivered_this_month(self):
        summary = ReportService.business_summary(self.shop, now=tuesday_at(12))

        # The 1st of January falls inside last week
        expected = self.today_a.payment + self.today_b.payment + self.yesterday.payment + self.last_week.payment
        self.assertEqual(summary['spend_this_month'], expected)

    def test_recent_newest_first(self):
        summary = ReportService.business_summary(self.shop, now=tuesday_at(12))

        self.assertEqual(len(summary['recent']), 5)
        self.assertEqual(summary['recent'][0]['id'], str(self.open.pk))

    def test_other_business_is_empty(self):
        other = make_business(email='other@example.com', name='Other')
        summary = ReportService.business_summary(other, now=tuesday_at(12))

        self.assertEqual(summary['total'], 0)
        self.assertEqual(summary['spend_this_month'], Decimal('0.00'))
        self.assertIsNone(summary['avg_cost']['pct'])
        self.assertEqual(summary['recent'], [])


class TestReportAPI(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.admin = make_admin()
        self.shop = make_business()
        self.courier = make_courier()

    def test_admin_endpoints(self):
        self.client.force_authenticate(user=self.admin)

        for url in ('/api/reports/overview/', '/api/reports/trends/?range=month', '/api/reports/leaderboard/'):
            with self.subTest(url=url):
                self.assertEqual(self.client.get(url).status_code, status.HTTP_200_OK)

    def test_bad_parameters(self):
        self.client.force_authenticate(user=self.admin)

        self.assertEqual(self.client.get('/api/reports/trends/?range=year').status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(self.client.get('/api/reports/leaderboard/?limit=ten').status_code, status.HTTP_400_BAD_REQUEST)

    def test_admin_reports_are_admin_only(self):
        for user in (self.shop, self.courier):
            self.client.force_authenticate(user=user)
            self.assertEqual(self.client.get('/api/reports/overview/').status_code, status.HTTP_403_FORBIDDEN)

    def test_business_summary_endpoint(self):
        self.client.force_authenticate(user=self.shop)
        response = self.client.get('/api/reports/business/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 0)

        self.client.force_authenticate(user=self.courier)
        self.assertEqual(self.client.get('/api/reports/business/').status_code, status.HTTP_403_FORBIDDEN)
