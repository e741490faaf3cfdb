"""
LOGISTICS App - Django Signals

``delivery_changed`` is sent by the lifecycle service after a delivery
mutation commits; the receiver pushes the fresh snapshot to WebSocket
subscribers.
"""

import logging

from django.dispatch import Signal, receiver

logger = logging.getLogger(__name__)


# Sent with delivery_id and created
delivery_changed = Signal()


@receiver(delivery_changed)
def on_delivery_changed(sender, delivery_id, created=False, **kwargs):
    """Broadcast the committed state of the delivery."""
    from logistics.events import broadcast_delivery
    from logistics.models import Delivery

    delivery = Delivery.objects.filter(pk=delivery_id).first()
    if delivery is None:
        logger.warning(f"[SIGNAL] Changed delivery {delivery_id} vanished before broadcast")
        return

    try:
        broadcast_delivery(delivery, created=created)
    except Exception as e:
        logger.warning(f"[SIGNAL] Broadcast for delivery {str(delivery_id)[:8]} failed: {e}")
