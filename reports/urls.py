"""
REPORTS App - URL Configuration
"""

from django.urls import path
from . import views

urlpatterns = [
    # Admin dashboard
    path('reports/overview/', views.AdminOverviewView.as_view(), name='report-overview'),
    path('reports/trends/', views.DailyTrendView.as_view(), name='report-trends'),
    path('reports/leaderboard/', views.CourierLeaderboardView.as_view(), name='report-leaderboard'),

    # Business dashboard
    path('reports/business/', views.BusinessSummaryView.as_view(), name='report-business'),
]
