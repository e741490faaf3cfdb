"""
REPORTS App - Dashboard aggregates

Read-only figures for the admin and business dashboards: counts by
status, week-over-week KPIs, the courier leaderboard and daily trends.
Weeks start on Sunday, days are local-time calendar days.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from django.db.models import Avg, Count, Q, Sum
from django.db.models.functions import TruncDate
from django.utils import timezone

from core.models import User, UserRole
from logistics.events import delivery_snapshot
from logistics.models import ACTIVE_STATUSES, Delivery, DeliveryStatus

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

RANGE_WEEK = 'week'
RANGE_MONTH = 'month'
RANGE_QUARTER = 'quarter'
TREND_RANGES = (RANGE_WEEK, RANGE_MONTH, RANGE_QUARTER)

RECENT_LIMIT = 5


# ===========================================
# DATE HELPERS
# ===========================================

def _local_midnight(day: date) -> datetime:
    return timezone.make_aware(datetime.combine(day, time.min), timezone.get_current_timezone())


def week_bounds(now: datetime) -> Tuple[datetime, datetime, datetime]:
    """(previous week start, this week start, next week start), Sunday based."""
    today = timezone.localtime(now).date()
    this_start = today - timedelta(days=(today.weekday() + 1) % 7)
    return (
        _local_midnight(this_start - timedelta(days=7)),
        _local_midnight(this_start),
        _local_midnight(this_start + timedelta(days=7)),
    )


def range_bounds(range_name: str, now: datetime) -> Tuple[date, date]:
    """
    First and last local day of a trend range.

    week: rolling 7 days ending today; month: since the 1st;
    quarter: rolling 90 days ending today.
    """
    today = timezone.localtime(now).date()
    if range_name == RANGE_MONTH:
        return today.replace(day=1), today
    if range_name == RANGE_QUARTER:
        return today - timedelta(days=90), today
    return today - timedelta(days=6), today


def trend(current, previous) -> Dict[str, Any]:
    """Current vs previous value with the percentage change (None when undefined)."""
    diff = current - previous
    pct = round(float(diff) / float(previous) * 100, 1) if previous else None
    return {
        'current': current,
        'previous': previous,
        'diff': diff,
        'pct': pct,
        'up': diff >= 0,
    }


# ===========================================
# REPORT SERVICE
# ===========================================

class ReportService:
    """Aggregates for the dashboards. Every method takes ``now`` for testability."""

    @staticmethod
    def status_breakdown(deliveries=None) -> Dict[str, int]:
        """Count per status, all four statuses always present."""
        deliveries = Delivery.objects.all() if deliveries is None else deliveries
        counts = dict(
            deliveries.order_by().values_list('status').annotate(n=Count('id'))
        )
        return {value: counts.get(value, 0) for value in DeliveryStatus.values}

    @staticmethod
    def _avg_income_per_courier(start: datetime, end: datetime) -> Decimal:
        """Delivered payments in [start, end) divided by couriers who earned them."""
        stats = Delivery.objects.filter(
            status=DeliveryStatus.DELIVERED,
            created_at__gte=start,
            created_at__lt=end,
        ).aggregate(
            total=Sum('payment'),
            couriers=Count('delivered_by', distinct=True),
        )
        if not stats['couriers']:
            return ZERO
        return (stats['total'] / stats['couriers']).quantize(Decimal('0.01'))

    @classmethod
    def admin_overview(cls, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        KPI cards of the admin dashboard.

        - deliveries created this week vs previous week
        - businesses and couriers now vs as of the end of previous week
        - average income per active courier, this week vs previous week
        """
        now = now or timezone.now()
        prev_start, this_start, next_start = week_bounds(now)

        this_week = Delivery.objects.filter(created_at__gte=this_start, created_at__lt=next_start).count()
        prev_week = Delivery.objects.filter(created_at__gte=prev_start, created_at__lt=this_start).count()

        businesses = User.objects.filter(role=UserRole.BUSINESS)
        couriers = User.objects.filter(role=UserRole.COURIER)

        return {
            'generated_at': now.isoformat(),
            'deliveries': trend(this_week, prev_week),
            'businesses': trend(
                businesses.count(),
                businesses.filter(date_joined__lt=this_start).count(),
            ),
            'couriers': trend(
                couriers.count(),
                couriers.filter(date_joined__lt=this_start).count(),
            ),
            'avg_courier_income': trend(
                cls._avg_income_per_courier(this_start, next_start),
                cls._avg_income_per_courier(prev_start, this_start),
            ),
            'status_breakdown': cls.status_breakdown(),
            'active_deliveries': Delivery.objects.filter(status__in=ACTIVE_STATUSES).count(),
        }

    @staticmethod
    def courier_leaderboard(limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Couriers ordered by balance, with delivered and in-progress counts."""
        couriers = (
            User.objects.filter(role=UserRole.COURIER)
            .select_related('courier_profile')
            .annotate(
                delivered=Count('completed_deliveries', distinct=True),
                in_progress=Count(
                    'assigned_deliveries',
                    filter=Q(assigned_deliveries__status__in=ACTIVE_STATUSES),
                    distinct=True,
                ),
            )
            .order_by('-courier_profile__balance', 'email')
        )
        if limit:
            couriers = couriers[:limit]

        board = []
        for rank, courier in enumerate(couriers, start=1):
            profile = getattr(courier, 'courier_profile', None)
            board.append({
                'rank': rank,
                'courier_id': str(courier.pk),
                'courier_name': courier.name,
                'email': courier.email,
                'balance': profile.balance if profile else ZERO,
                'delivered': courier.delivered,
                'in_progress': courier.in_progress,
            })
        return board

    @staticmethod
    def daily_trend(range_name: str = RANGE_WEEK, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Per-day delivered counts and income over a range, empty days filled.

        Each day also carries the number of couriers who delivered and the
        per-courier averages.
        """
        if range_name not in TREND_RANGES:
            raise ValueError(f"range must be one of {', '.join(TREND_RANGES)}")

        now = now or timezone.now()
        first_day, last_day = range_bounds(range_name, now)

        rows = (
            Delivery.objects.filter(
                status=DeliveryStatus.DELIVERED,
                created_at__gte=_local_midnight(first_day),
                created_at__lt=_local_midnight(last_day + timedelta(days=1)),
            )
            .annotate(day=TruncDate('created_at', tzinfo=timezone.get_current_timezone()))
            .order_by()
            .values('day', 'delivered_by')
            .annotate(count=Count('id'), income=Sum('payment'))
        )

        per_day = defaultdict(lambda: {'deliveries': 0, 'income': ZERO, 'couriers': 0})
        for row in rows:
            bucket = per_day[row['day']]
            bucket['deliveries'] += row['count']
            bucket['income'] += row['income'] or ZERO
            bucket['couriers'] += 1

        days = []
        day = first_day
        while day <= last_day:
            bucket = per_day.get(day, {'deliveries': 0, 'income': ZERO, 'couriers': 0})
            active = bucket['couriers']
            days.append({
                'date': day.isoformat(),
                'deliveries': bucket['deliveries'],
                'income': bucket['income'],
                'active_couriers': active,
                'avg_deliveries': round(bucket['deliveries'] / active, 2) if active else 0,
                'avg_income': (bucket['income'] / active).quantize(Decimal('0.01')) if active else ZERO,
            })
            day += timedelta(days=1)

        return {
            'range': range_name,
            'from': first_day.isoformat(),
            'to': last_day.isoformat(),
            'days': days,
        }

    @classmethod
    def business_summary(cls, business: User, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Business dashboard figures.

        Spend counts delivered deliveries only; the average cost compares
        delivered deliveries created this week and last week. recent
        holds the latest deliveries, newest first.
        """
        now = now or timezone.now()
        prev_start, this_start, next_start = week_bounds(now)
        month_start = _local_midnight(timezone.localtime(now).date().replace(day=1))

        own = Delivery.objects.filter(business=business)
        delivered = own.filter(status=DeliveryStatus.DELIVERED)

        def avg_cost(start, end):
            value = delivered.filter(created_at__gte=start, created_at__lt=end).aggregate(
                avg=Avg('payment')
            )['avg']
            return Decimal(value).quantize(Decimal('0.01')) if value is not None else ZERO

        return {
            'generated_at': now.isoformat(),
            'total': own.count(),
            'completed': delivered.count(),
            'in_progress': own.filter(status__in=ACTIVE_STATUSES).count(),
            'spend_this_month': delivered.filter(created_at__gte=month_start).aggregate(
                total=Sum('payment')
            )['total'] or ZERO,
            'avg_cost': trend(avg_cost(this_start, next_start), avg_cost(prev_start, this_start)),
            'status_breakdown': cls.status_breakdown(own),
            'recent': [delivery_snapshot(d) for d in own.order_by('-created_at')[:RECENT_LIMIT]],
        }
