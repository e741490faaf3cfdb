"""
LOGISTICS App - Real-time Event Broadcasting

Utility functions to broadcast events via Django Channels.
Every event carries the full current state of the object (a snapshot),
so consumers replace what they hold instead of patching it.
"""

import logging
from typing import Iterable, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.utils import timezone

logger = logging.getLogger(__name__)


# ============================================
# GROUP NAMES
# ============================================

DISPATCH_GROUP = 'dispatch'
COURIERS_GROUP = 'couriers'


def delivery_group(delivery_id) -> str:
    return f'delivery_{delivery_id}'


def business_group(business_id) -> str:
    return f'business_{business_id}'


def courier_location_group(courier_id) -> str:
    return f'courier_location_{courier_id}'


def _send_group_event(group_name: str, event: dict) -> bool:
    """Send event to a channel group. Failures are logged, never raised."""
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.warning("[EVENTS] No channel layer configured")
        return False

    try:
        async_to_sync(channel_layer.group_send)(group_name, event)
        return True
    except Exception as e:
        logger.error(f"[EVENTS] Failed to send to group {group_name}: {e}")
        return False


# ============================================
# SNAPSHOTS
# ============================================

def delivery_snapshot(delivery) -> dict:
    """Viewer-independent JSON state of a delivery."""
    from logistics.serializers import DeliverySerializer

    return dict(DeliverySerializer(delivery).data)


def location_snapshot(location) -> dict:
    return {
        'courier_id': str(location.courier_id),
        'latitude': location.latitude,
        'longitude': location.longitude,
        'updated_at': location.updated_at.isoformat(),
    }


# ============================================
# DELIVERY EVENTS
# ============================================

def broadcast_delivery(delivery, created: bool = False):
    """
    Broadcast the new state of a delivery to all interested parties.

    Notifies:
    - Clients tracking the specific delivery
    - The owning business
    - All couriers (candidate feeds add, update or drop the row)
    - Admin dispatch monitors
    """
    snapshot = delivery_snapshot(delivery)
    event = {
        'type': 'delivery_snapshot',
        'delivery': snapshot,
        'created': created,
        'timestamp': timezone.now().isoformat(),
    }

    _send_group_event(delivery_group(delivery.id), event)
    _send_group_event(business_group(delivery.business_id), event)
    _send_group_event(COURIERS_GROUP, event)
    _send_group_event(DISPATCH_GROUP, event)

    logger.debug(
        f"[EVENTS] Broadcasted delivery {str(delivery.id)[:8]} -> {delivery.status}"
    )


# ============================================
# COURIER LOCATION EVENTS
# ============================================

def broadcast_courier_location(location, active_delivery_ids: Optional[Iterable] = None):
    """
    Broadcast a courier's current-position slot.

    Notifies:
    - Subscribers of that courier's location
    - Clients tracking the courier's active deliveries
    - Admin dispatch monitors
    """
    event = {
        'type': 'courier_location',
        'location': location_snapshot(location),
    }

    _send_group_event(courier_location_group(location.courier_id), event)
    for delivery_id in active_delivery_ids or ():
        _send_group_event(delivery_group(delivery_id), event)
    _send_group_event(DISPATCH_GROUP, event)

    logger.debug(
        f"[EVENTS] Broadcasted courier location: {str(location.courier_id)[:8]} "
        f"({location.latitude:.5f}, {location.longitude:.5f})"
    )
