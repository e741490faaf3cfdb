"""
LOGISTICS App - Delivery Lifecycle Service

Every delivery mutation goes through this module:

    create            business            -> POSTED
    accept            any courier         POSTED -> ACCEPTED (single winner)
    picked_up         assigned courier    ACCEPTED -> PICKED_UP
    delivered         assigned courier    PICKED_UP -> DELIVERED (+ balance credit)

Admins and businesses observe only. Errors are ValueError subclasses
carrying an HTTP status and a machine code for the API layer.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.models import BusinessProfile, CourierProfile, User, UserRole
from logistics.models import Delivery, DeliveryStatus
from logistics.services.pricing import get_pricing_engine
from logistics.signals import delivery_changed
from logistics.utils import is_valid_coordinate

logger = logging.getLogger(__name__)


# ============================================
# STATE MACHINE
# ============================================

TRANSITIONS = {
    DeliveryStatus.POSTED: DeliveryStatus.ACCEPTED,
    DeliveryStatus.ACCEPTED: DeliveryStatus.PICKED_UP,
    DeliveryStatus.PICKED_UP: DeliveryStatus.DELIVERED,
}

TIMESTAMP_FIELDS = {
    DeliveryStatus.ACCEPTED: 'accepted_at',
    DeliveryStatus.PICKED_UP: 'picked_up_at',
    DeliveryStatus.DELIVERED: 'delivered_at',
}


def next_status(status: str) -> Optional[str]:
    """The only legal successor of ``status``, None when terminal."""
    return TRANSITIONS.get(status)


def is_legal_transition(current: str, target: str) -> bool:
    return TRANSITIONS.get(current) == target


# ============================================
# ERRORS
# ============================================

class DeliveryError(ValueError):
    """Base class for lifecycle failures."""
    http_status = 400
    code = 'invalid'

    def __init__(self, message: str, errors: Optional[dict] = None):
        super().__init__(message)
        self.errors = errors or {}


class DeliveryValidationError(DeliveryError):
    """Input rejected; ``errors`` maps field names to messages."""
    code = 'validation'


class DeliveryNotFound(DeliveryError):
    http_status = 404
    code = 'not_found'


class RoleNotPermitted(DeliveryError):
    http_status = 403
    code = 'forbidden'


class NotAssignedCourier(DeliveryError):
    http_status = 403
    code = 'not_assigned'


class DeliveryAlreadyTaken(DeliveryError):
    """Lost the accept race: another courier claimed the delivery first."""
    http_status = 409
    code = 'race_lost'


class InvalidTransition(DeliveryError):
    """Requested status no longer follows the current one; refresh and retry by hand."""
    http_status = 409
    code = 'stale_state'


def _notify(delivery_id, created: bool = False):
    """Fire delivery_changed once the surrounding transaction commits."""
    transaction.on_commit(
        lambda: delivery_changed.send(sender=Delivery, delivery_id=delivery_id, created=created)
    )


# ============================================
# CREATE
# ============================================

@transaction.atomic
def create_delivery(
    business: User,
    item: str,
    destination_address: str,
    destination_latitude: float,
    destination_longitude: float,
    destination_place_id: str = '',
    now: Optional[datetime] = None
) -> Delivery:
    """
    Post a new delivery for a business.

    The pickup side is a snapshot of the business profile; the payment is
    priced once, here, from the snapshot and ``now``.

    Raises:
        RoleNotPermitted: caller is not a business
        DeliveryValidationError: missing item, unresolved destination,
            or a business profile without a location
    """
    if business.role != UserRole.BUSINESS:
        raise RoleNotPermitted("only businesses can create deliveries")

    errors = {}
    item = (item or '').strip()
    if not item:
        errors['item'] = 'Item is required.'
    if not (destination_address or '').strip():
        errors['destination_address'] = 'Destination address is required.'
    if not is_valid_coordinate(destination_latitude, destination_longitude):
        errors['destination'] = 'Pick a destination from the address suggestions.'

    profile = BusinessProfile.objects.filter(user=business).first()
    if profile is None or profile.location is None:
        errors['business_location'] = 'Set the business address in your profile first.'

    if errors:
        raise DeliveryValidationError("invalid delivery", errors)

    now = now or timezone.now()
    quote = get_pricing_engine().quote(
        profile.location,
        (destination_latitude, destination_longitude),
        when=now,
    )

    delivery = Delivery.objects.create(
        business=business,
        business_name=profile.business_name,
        business_address=profile.business_address,
        business_latitude=profile.latitude,
        business_longitude=profile.longitude,
        destination_address=destination_address.strip(),
        destination_latitude=destination_latitude,
        destination_longitude=destination_longitude,
        destination_place_id=destination_place_id or '',
        item=item,
        distance_km=round(quote.distance_km, 3),
        payment=quote.payment,
        status=DeliveryStatus.POSTED,
        created_at=now,
    )

    logger.info(
        f"[LIFECYCLE] Delivery {str(delivery.id)[:8]} posted by {business.email} "
        f"({delivery.distance_km:.2f} km, {delivery.payment})"
    )
    _notify(delivery.id, created=True)
    return delivery


# ============================================
# ACCEPT (atomic claim)
# ============================================

@transaction.atomic
def accept_delivery(delivery_id, courier: User, now: Optional[datetime] = None) -> Delivery:
    """
    Claim a posted delivery for a courier.

    The claim is a single conditional UPDATE on (status=POSTED,
    assigned_to IS NULL): under concurrent attempts exactly one row
    update succeeds, every other caller gets DeliveryAlreadyTaken.

    Raises:
        RoleNotPermitted: caller is not a courier
        DeliveryNotFound: unknown id
        DeliveryAlreadyTaken: someone else won, or it is no longer posted
    """
    if courier.role != UserRole.COURIER:
        raise RoleNotPermitted("only couriers can accept deliveries")
    if not courier.is_active:
        raise RoleNotPermitted("courier account is disabled")

    now = now or timezone.now()
    claimed = Delivery.objects.filter(
        pk=delivery_id,
        status=DeliveryStatus.POSTED,
        assigned_to__isnull=True,
    ).update(
        status=DeliveryStatus.ACCEPTED,
        assigned_to=courier,
        accepted_at=now,
        updated_at=now,
    )

    if not claimed:
        if not Delivery.objects.filter(pk=delivery_id).exists():
            raise DeliveryNotFound(f"delivery {delivery_id} not found")
        logger.info(f"[LIFECYCLE] Courier {courier.email} lost the race for {str(delivery_id)[:8]}")
        raise DeliveryAlreadyTaken("delivery already taken")

    delivery = Delivery.objects.get(pk=delivery_id)
    logger.info(f"[LIFECYCLE] Delivery {str(delivery.id)[:8]} accepted by {courier.email}")
    _notify(delivery.id)
    return delivery


# ============================================
# ADVANCE (assigned courier only)
# ============================================

@transaction.atomic
def advance_delivery(
    delivery_id,
    courier: User,
    target_status: str,
    now: Optional[datetime] = None
) -> Delivery:
    """
    Move a delivery to ``target_status``.

    ACCEPTED is delegated to accept_delivery, unless the caller already
    holds the delivery (stale state, not a lost race). PICKED_UP and DELIVERED
    require the caller to be the assigned courier. DELIVERED records
    ``delivered_by`` and credits the courier balance by the payment in
    the same transaction.

    Raises:
        DeliveryValidationError: unknown status value
        RoleNotPermitted / NotAssignedCourier: wrong caller
        InvalidTransition: current status does not lead to target
    """
    if target_status not in DeliveryStatus.values:
        raise DeliveryValidationError(
            f"unknown status '{target_status}'",
            {'status': f"Must be one of: {', '.join(DeliveryStatus.values)}."}
        )
    if target_status == DeliveryStatus.ACCEPTED:
        current = (
            Delivery.objects.filter(pk=delivery_id, assigned_to=courier)
            .values_list('status', flat=True).first()
        )
        if current is not None:
            # The caller already holds it; nobody raced them
            raise InvalidTransition(f"invalid status change: {current} → {target_status}")
        return accept_delivery(delivery_id, courier, now=now)
    if courier.role != UserRole.COURIER:
        raise RoleNotPermitted("only the assigned courier can change a delivery status")

    try:
        delivery = Delivery.objects.select_for_update().get(pk=delivery_id)
    except Delivery.DoesNotExist:
        raise DeliveryNotFound(f"delivery {delivery_id} not found")

    if delivery.assigned_to_id != courier.pk:
        raise NotAssignedCourier("this delivery is assigned to a different courier")

    current = delivery.status
    if not is_legal_transition(current, target_status):
        raise InvalidTransition(f"invalid status change: {current} → {target_status}")

    now = now or timezone.now()
    delivery.status = target_status
    setattr(delivery, TIMESTAMP_FIELDS[target_status], now)
    update_fields = ['status', TIMESTAMP_FIELDS[target_status], 'updated_at']

    if target_status == DeliveryStatus.DELIVERED:
        delivery.delivered_by_id = delivery.assigned_to_id
        update_fields.append('delivered_by')
        credit_courier_balance(delivery.assigned_to_id, delivery.payment)

    delivery.save(update_fields=update_fields)

    logger.info(
        f"[LIFECYCLE] Delivery {str(delivery.id)[:8]} {current} -> {target_status} "
        f"by {courier.email}"
    )
    _notify(delivery.id)
    return delivery


def credit_courier_balance(courier_id, amount: Decimal) -> None:
    """Add ``amount`` to the courier balance with a single UPDATE."""
    updated = CourierProfile.objects.filter(user_id=courier_id).update(
        balance=F('balance') + amount
    )
    if not updated:
        logger.warning(f"[LIFECYCLE] No courier profile to credit for {courier_id}")
