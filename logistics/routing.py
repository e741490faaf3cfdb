"""
LOGISTICS App - WebSocket Routing Configuration

Maps WebSocket URLs to consumers. Every socket authenticates with
``?token=<access token>``.
"""

from django.urls import re_path
from . import consumers


websocket_urlpatterns = [
    # Track a specific delivery in real-time
    # ws://localhost:8000/ws/deliveries/<uuid>/
    re_path(
        r'ws/deliveries/(?P<delivery_id>[0-9a-fA-F-]{36})/$',
        consumers.DeliveryTrackingConsumer.as_asgi()
    ),

    # A courier's current-position slot
    # ws://localhost:8000/ws/couriers/<uuid>/location/
    re_path(
        r'ws/couriers/(?P<courier_id>[0-9a-fA-F-]{36})/location/$',
        consumers.CourierLocationConsumer.as_asgi()
    ),

    # Courier app - candidate deliveries in, location updates out
    # ws://localhost:8000/ws/courier/
    re_path(
        r'ws/courier/$',
        consumers.CourierConsumer.as_asgi()
    ),

    # Business dashboard - own deliveries
    # ws://localhost:8000/ws/business/
    re_path(
        r'ws/business/$',
        consumers.BusinessConsumer.as_asgi()
    ),

    # Admin monitor - all deliveries and courier locations
    # ws://localhost:8000/ws/dispatch/
    re_path(
        r'ws/dispatch/$',
        consumers.DispatchConsumer.as_asgi()
    ),
]
