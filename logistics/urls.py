"""
Logistics App URLs
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import (
    CourierLocationHistoryView,
    CourierLocationListView,
    CourierLocationView,
    DeliveryViewSet,
)

router = DefaultRouter()
router.register(r'deliveries', DeliveryViewSet, basename='delivery')

urlpatterns = [
    # Courier endpoints
    path('courier/location/', CourierLocationView.as_view(), name='courier-location'),

    # Admin map
    path('couriers/locations/', CourierLocationListView.as_view(), name='courier-locations'),
    path(
        'couriers/<uuid:courier_id>/location-history/',
        CourierLocationHistoryView.as_view(),
        name='courier-location-history'
    ),

    # Router URLs
    path('', include(router.urls)),
]
