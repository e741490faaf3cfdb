"""
REPORTS App - Dashboard API

Admin: overview KPIs, status breakdown, daily trends, courier leaderboard.
Business: its own summary.
"""

import logging

from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from core.permissions import IsAdmin, IsBusiness
from .services import TREND_RANGES, ReportService

logger = logging.getLogger(__name__)


class AdminOverviewView(APIView):
    """GET /api/reports/overview/ (Admin only)."""

    permission_classes = [permissions.IsAuthenticated, IsAdmin]

    def get(self, request):
        return Response(ReportService.admin_overview())


class DailyTrendView(APIView):
    """GET /api/reports/trends/?range=week|month|quarter (Admin only)."""

    permission_classes = [permissions.IsAuthenticated, IsAdmin]

    def get(self, request):
        range_name = request.query_params.get('range', 'week')
        if range_name not in TREND_RANGES:
            return Response(
                {'error': f"range must be one of {', '.join(TREND_RANGES)}", 'code': 'invalid'},
                status=status.HTTP_400_BAD_REQUEST
            )
        return Response(ReportService.daily_trend(range_name))


class CourierLeaderboardView(APIView):
    """GET /api/reports/leaderboard/?limit=10 (Admin only)."""

    permission_classes = [permissions.IsAuthenticated, IsAdmin]

    def get(self, request):
        try:
            limit = int(request.query_params.get('limit', 0)) or None
        except ValueError:
            return Response(
                {'error': 'limit must be an integer', 'code': 'invalid'},
                status=status.HTTP_400_BAD_REQUEST
            )
        return Response(ReportService.courier_leaderboard(limit=limit))


class BusinessSummaryView(APIView):
    """GET /api/reports/business/ (Business only, own figures)."""

    permission_classes = [permissions.IsAuthenticated, IsBusiness]

    def get(self, request):
        return Response(ReportService.business_summary(request.user))
