"""
LOGISTICS App - WebSocket Consumers for Real-time Tracking

Read/subscribe channel for dashboards. Deliveries are only mutated over
REST; the one write accepted here is a courier's own location update.

Provides real-time updates for:
- Delivery tracking (business following its delivery, assigned courier)
- Courier location (admin, the courier, businesses it is serving)
- Courier feed (candidate deliveries near the courier, own jobs)
- Business dashboard (own deliveries)
- Dispatch monitoring (admins)
"""

import logging
import math
from typing import Any, Dict, Optional

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.conf import settings

from core.models import UserRole
from logistics import events
from logistics.utils import haversine_km, radius_for_zoom

logger = logging.getLogger(__name__)

# Close codes
CLOSE_UNAUTHENTICATED = 4001
CLOSE_FORBIDDEN = 4003
CLOSE_NOT_FOUND = 4004


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def delivery_message(user, snapshot: dict) -> Dict[str, Any]:
    """
    Shape a delivery snapshot for one viewer.

    Viewers who may no longer see the row (a courier whose candidate was
    claimed by someone else) get a ``delivery_withdrawn`` message instead.
    """
    from logistics.services.visibility import available_actions

    assigned_to = snapshot.get('assigned_to')
    if user.role == UserRole.COURIER:
        mine = assigned_to is not None and str(assigned_to) == str(user.pk)
        open_candidate = snapshot['status'] == 'posted' and assigned_to is None
        if not (mine or open_candidate):
            return {'type': 'delivery_withdrawn', 'delivery_id': snapshot['id']}

    return {
        'type': 'delivery',
        'delivery': snapshot,
        'actions': available_actions(snapshot['status'], assigned_to, user.pk, user.role),
    }


class AuthenticatedConsumer(AsyncJsonWebsocketConsumer):
    """Base consumer: rejects anonymous sockets and answers pings."""

    allowed_roles = None
    groups_joined = ()

    async def connect(self):
        self.user = self.scope.get('user')
        self.groups_joined = []

        if not self.user or self.user.is_anonymous:
            await self.close(code=CLOSE_UNAUTHENTICATED)
            return
        if self.allowed_roles is not None and self.user.role not in self.allowed_roles:
            await self.close(code=CLOSE_FORBIDDEN)
            return

        await self.on_connect()

    async def on_connect(self):
        raise NotImplementedError

    async def join(self, group_name: str):
        await self.channel_layer.group_add(group_name, self.channel_name)
        self.groups_joined.append(group_name)

    async def disconnect(self, close_code):
        for group_name in self.groups_joined:
            await self.channel_layer.group_discard(group_name, self.channel_name)
        logger.info(f"[WS] {self.__class__.__name__} disconnected ({close_code})")

    async def receive_json(self, content):
        """Handle incoming WebSocket messages from clients."""
        if content.get('type') == 'ping':
            await self.send_json({'type': 'pong'})

    # ============================================
    # Event Handlers (called via channel_layer.group_send)
    # ============================================

    async def delivery_snapshot(self, event):
        await self.send_json(delivery_message(self.user, event['delivery']))

    async def courier_location(self, event):
        await self.send_json({'type': 'courier_location', 'location': event['location']})


class DeliveryTrackingConsumer(AuthenticatedConsumer):
    """
    WebSocket consumer for tracking a specific delivery.

    Clients connect to: ws://host/ws/deliveries/<delivery_id>/

    Messages sent:
    - delivery: full snapshot, on connect and on every change
    - courier_location: the assigned courier's position while active
    """

    async def on_connect(self):
        self.delivery_id = self.scope['url_route']['kwargs']['delivery_id']

        state = await self.get_delivery_state()
        if state is None:
            await self.close(code=CLOSE_NOT_FOUND)
            return
        if not state['allowed']:
            await self.close(code=CLOSE_FORBIDDEN)
            return

        await self.join(events.delivery_group(self.delivery_id))
        await self.accept()

        await self.send_json(delivery_message(self.user, state['delivery']))
        if state['courier_location']:
            await self.send_json({'type': 'courier_location', 'location': state['courier_location']})

        logger.info(f"[WS] Client connected to delivery {self.delivery_id[:8]}")

    async def delivery_snapshot(self, event):
        """A courier whose candidate went to someone else loses the subscription."""
        message = delivery_message(self.user, event['delivery'])
        await self.send_json(message)

        if message['type'] == 'delivery_withdrawn':
            group_name = events.delivery_group(self.delivery_id)
            await self.channel_layer.group_discard(group_name, self.channel_name)
            self.groups_joined.remove(group_name)
            await self.close(code=CLOSE_FORBIDDEN)
            logger.info(f"[WS] Courier {self.user.email} unsubscribed from delivery {self.delivery_id[:8]}")

    async def courier_location(self, event):
        """Couriers only ever see their own position here."""
        location = event['location']
        if self.user.role == UserRole.COURIER and location['courier_id'] != str(self.user.pk):
            return
        await self.send_json({'type': 'courier_location', 'location': location})

    @database_sync_to_async
    def get_delivery_state(self) -> Optional[Dict[str, Any]]:
        from logistics.models import Delivery
        from logistics.services.tracking import current_location
        from logistics.services.visibility import can_view_delivery

        delivery = Delivery.objects.filter(pk=self.delivery_id).first()
        if delivery is None:
            return None

        location = None
        if delivery.is_active:
            slot = current_location(delivery.assigned_to_id)
            location = events.location_snapshot(slot) if slot else None

        return {
            'allowed': can_view_delivery(self.user, delivery),
            'delivery': events.delivery_snapshot(delivery),
            'courier_location': location,
        }


class CourierLocationConsumer(AuthenticatedConsumer):
    """
    WebSocket consumer for one courier's current-position slot.

    Clients connect to: ws://host/ws/couriers/<courier_id>/location/
    """

    async def on_connect(self):
        self.courier_id = self.scope['url_route']['kwargs']['courier_id']

        allowed, location = await self.get_courier_state()
        if not allowed:
            await self.close(code=CLOSE_FORBIDDEN)
            return

        await self.join(events.courier_location_group(self.courier_id))
        await self.accept()

        await self.send_json({'type': 'courier_location', 'location': location})

    @database_sync_to_async
    def get_courier_state(self):
        from logistics.services.tracking import current_location
        from logistics.services.visibility import can_track_courier

        if not can_track_courier(self.user, self.courier_id):
            return False, None
        slot = current_location(self.courier_id)
        return True, events.location_snapshot(slot) if slot else None


class CourierConsumer(AuthenticatedConsumer):
    """
    WebSocket consumer for the courier app.

    Clients connect to: ws://host/ws/courier/

    Messages sent by courier:
    - location_update {latitude, longitude}: overwrite own position
    - set_area {radius_km | zoom}: change the candidate radius
    - ping

    Messages received by courier:
    - delivery: a candidate inside the area, or one of its own jobs
    - delivery_withdrawn: a candidate was claimed by another courier
    """

    allowed_roles = (UserRole.COURIER,)

    async def on_connect(self):
        area = await self.load_area()
        self.center = area.center
        self.radius_km = area.radius_km

        await self.join(events.COURIERS_GROUP)
        await self.accept()

        await self.send_json({'type': 'connection_established', 'area': self.area_dict()})
        logger.info(f"[WS] Courier {self.user.email} connected")

    def area_dict(self) -> dict:
        return {
            'latitude': self.center[0] if self.center else None,
            'longitude': self.center[1] if self.center else None,
            'radius_km': self.radius_km,
        }

    async def receive_json(self, content):
        """Handle incoming messages from courier app."""
        message_type = content.get('type')

        if message_type == 'location_update':
            latitude = content.get('latitude')
            longitude = content.get('longitude')
            ok, error = await self.update_location(latitude, longitude)
            if ok:
                self.center = (latitude, longitude)
                await self.send_json({
                    'type': 'location_confirmed',
                    'latitude': latitude,
                    'longitude': longitude,
                })
            else:
                await self.send_json({'type': 'error', 'message': error})

        elif message_type == 'set_area':
            radius_km = content.get('radius_km')
            zoom = content.get('zoom')
            if _is_number(radius_km):
                radius_km = float(radius_km)
            elif _is_number(zoom):
                radius_km = radius_for_zoom(zoom)
            else:
                await self.send_json({'type': 'error', 'message': 'radius_km or zoom is required'})
                return
            self.radius_km = max(0.0, min(radius_km, settings.COURIER_MAX_RADIUS_KM))
            await self.send_json({'type': 'area', 'area': self.area_dict()})

        elif message_type == 'ping':
            await self.send_json({'type': 'pong'})

    async def delivery_snapshot(self, event):
        """Forward own jobs, candidates inside the area, withdrawals of claimed ones."""
        snapshot = event['delivery']
        message = delivery_message(self.user, snapshot)

        if message['type'] == 'delivery' and snapshot['assigned_to'] is None:
            location = snapshot['business_location']
            if self.center is None or haversine_km(
                self.center[0], self.center[1], location['latitude'], location['longitude']
            ) > self.radius_km:
                return

        await self.send_json(message)

    # ============================================
    # Database helpers
    # ============================================

    @database_sync_to_async
    def load_area(self):
        from logistics.services.visibility import resolve_search_area
        return resolve_search_area(self.user)

    @database_sync_to_async
    def update_location(self, latitude, longitude):
        from logistics.services.tracking import LocationError, update_courier_location

        try:
            update_courier_location(self.user, latitude, longitude)
            return True, None
        except LocationError as e:
            return False, str(e)


class BusinessConsumer(AuthenticatedConsumer):
    """
    WebSocket consumer for the business dashboard.

    Clients connect to: ws://host/ws/business/
    Receives a snapshot whenever one of its deliveries changes.
    """

    allowed_roles = (UserRole.BUSINESS,)

    async def on_connect(self):
        await self.join(events.business_group(self.user.pk))
        await self.accept()
        await self.send_json({'type': 'connection_established'})


class DispatchConsumer(AuthenticatedConsumer):
    """
    WebSocket consumer for admin monitoring.

    Clients connect to: ws://host/ws/dispatch/

    Messages sent:
    - dispatch_state: active deliveries and courier positions, on connect
      and on ``refresh``
    - delivery / courier_location: live changes
    """

    allowed_roles = (UserRole.ADMIN,)

    async def on_connect(self):
        await self.join(events.DISPATCH_GROUP)
        await self.accept()
        await self.send_json(await self.get_dispatch_state())
        logger.info(f"[WS] Dispatch monitor connected ({self.user.email})")

    async def receive_json(self, content):
        message_type = content.get('type')

        if message_type == 'refresh':
            await self.send_json(await self.get_dispatch_state())
        elif message_type == 'ping':
            await self.send_json({'type': 'pong'})

    @database_sync_to_async
    def get_dispatch_state(self) -> Dict[str, Any]:
        from logistics.models import ACTIVE_STATUSES, Delivery, DeliveryStatus
        from logistics.services.tracking import active_courier_locations

        open_statuses = (DeliveryStatus.POSTED, *ACTIVE_STATUSES)
        deliveries = Delivery.objects.filter(status__in=open_statuses).order_by('-created_at')
        return {
            'type': 'dispatch_state',
            'deliveries': [events.delivery_snapshot(d) for d in deliveries],
            'couriers': [events.location_snapshot(loc) for loc in active_courier_locations()],
        }
