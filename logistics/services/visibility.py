"""
LOGISTICS App - Role-scoped visibility

Decides which deliveries each role may see, which row actions each
viewer gets, and who may subscribe to what.

- Business: its own deliveries, whole history, never anything else
- Courier: posted deliveries within a radius of its position, plus
  its own accepted / picked-up ones wherever they are
- Admin: everything, read-only
- Role pending: nothing
"""

import logging
from typing import List, Optional, Tuple

from django.conf import settings
from django.db.models import Q, QuerySet

from core.models import UserRole
from logistics.models import ACTIVE_STATUSES, CourierLocation, Delivery, DeliveryStatus
from logistics.utils import bounding_box, haversine_km, radius_for_zoom

logger = logging.getLogger(__name__)

Point = Tuple[float, float]


class SearchArea:
    """Center and radius of a courier's candidate feed."""

    def __init__(self, center: Optional[Point], radius_km: float):
        self.center = center
        self.radius_km = radius_km

    def contains(self, lat: float, lng: float) -> bool:
        if self.center is None:
            return False
        return haversine_km(self.center[0], self.center[1], lat, lng) <= self.radius_km

    def as_dict(self) -> dict:
        return {
            'latitude': self.center[0] if self.center else None,
            'longitude': self.center[1] if self.center else None,
            'radius_km': self.radius_km,
        }


def resolve_search_area(
    courier,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius_km: Optional[float] = None,
    zoom: Optional[int] = None
) -> SearchArea:
    """
    Build the courier's search area.

    Center: explicit lat/lng, else the courier's current-position slot.
    Radius: explicit ``radius_km``, else derived from ``zoom``, else the
    configured default. Clamped to the configured maximum.
    """
    center = None
    if lat is not None and lng is not None:
        center = (lat, lng)
    else:
        slot = CourierLocation.objects.filter(courier=courier).first()
        if slot is not None:
            center = slot.point

    if radius_km is None:
        radius_km = radius_for_zoom(zoom) if zoom is not None else settings.COURIER_DEFAULT_RADIUS_KM
    radius_km = max(0.0, min(float(radius_km), settings.COURIER_MAX_RADIUS_KM))

    return SearchArea(center, radius_km)


# ============================================
# QUERYSETS
# ============================================

def _base_queryset() -> QuerySet:
    return Delivery.objects.select_related('business', 'assigned_to', 'delivered_by')


def candidate_ids_within(area: SearchArea) -> List:
    """Ids of posted, unassigned deliveries whose pickup lies inside ``area``."""
    if area.center is None:
        return []

    min_lat, max_lat, min_lng, max_lng = bounding_box(area.center, area.radius_km)
    rows = Delivery.objects.filter(
        status=DeliveryStatus.POSTED,
        assigned_to__isnull=True,
        business_latitude__gte=min_lat,
        business_latitude__lte=max_lat,
        business_longitude__gte=min_lng,
        business_longitude__lte=max_lng,
    ).values_list('id', 'business_latitude', 'business_longitude')

    return [pk for pk, lat, lng in rows if area.contains(lat, lng)]


def deliveries_for(user, status: Optional[str] = None, area: Optional[SearchArea] = None) -> QuerySet:
    """
    Deliveries ``user`` may see, newest first.

    For couriers ``area`` bounds the posted candidates; without a status
    the feed is candidates plus own active jobs, with ``status=posted``
    only candidates, with any later status only the courier's own.
    """
    qs = _base_queryset()
    role = getattr(user, 'role', None)

    if role == UserRole.ADMIN:
        scoped = qs
    elif role == UserRole.BUSINESS:
        scoped = qs.filter(business=user)
    elif role == UserRole.COURIER:
        area = area or resolve_search_area(user)
        own = Q(assigned_to=user)
        if status is None:
            candidates = candidate_ids_within(area)
            scoped = qs.filter(Q(pk__in=candidates) | (own & Q(status__in=ACTIVE_STATUSES)))
        elif status == DeliveryStatus.POSTED:
            scoped = qs.filter(pk__in=candidate_ids_within(area))
        else:
            scoped = qs.filter(own)
    else:
        return qs.none()

    if status is not None:
        scoped = scoped.filter(status=status)
    return scoped.order_by('-created_at')


# ============================================
# PER-ROW ACTIONS
# ============================================

ACCEPT = 'accept'
MARK_PICKED_UP = DeliveryStatus.PICKED_UP.value
MARK_DELIVERED = DeliveryStatus.DELIVERED.value


def available_actions(status: str, assigned_to_id, viewer_id, viewer_role: Optional[str]) -> List[str]:
    """
    Row actions for a viewer.

    A courier may accept a posted row, mark its own accepted row picked
    up and its own picked-up row delivered. Businesses and admins never
    get actions.
    """
    if viewer_role != UserRole.COURIER:
        return []
    if status == DeliveryStatus.POSTED and assigned_to_id is None:
        return [ACCEPT]

    is_mine = assigned_to_id is not None and str(assigned_to_id) == str(viewer_id)
    if not is_mine:
        return []
    if status == DeliveryStatus.ACCEPTED:
        return [MARK_PICKED_UP]
    if status == DeliveryStatus.PICKED_UP:
        return [MARK_DELIVERED]
    return []


def navigation_target(delivery) -> Optional[dict]:
    """Where the assigned courier is heading: pickup first, then destination."""
    if delivery.status == DeliveryStatus.ACCEPTED:
        return {
            'kind': 'pickup',
            'latitude': delivery.business_latitude,
            'longitude': delivery.business_longitude,
            'address': delivery.business_address,
        }
    if delivery.status == DeliveryStatus.PICKED_UP:
        return {
            'kind': 'destination',
            'latitude': delivery.destination_latitude,
            'longitude': delivery.destination_longitude,
            'address': delivery.destination_address,
        }
    return None


# ============================================
# ACCESS CHECKS
# ============================================

def can_view_delivery(user, delivery) -> bool:
    role = getattr(user, 'role', None)
    if role == UserRole.ADMIN:
        return True
    if role == UserRole.BUSINESS:
        return delivery.business_id == user.pk
    if role == UserRole.COURIER:
        if delivery.assigned_to_id == user.pk:
            return True
        return delivery.status == DeliveryStatus.POSTED and delivery.assigned_to_id is None
    return False


def can_track_courier(user, courier_id) -> bool:
    """Admins, the courier itself, and businesses the courier is serving right now."""
    role = getattr(user, 'role', None)
    if role == UserRole.ADMIN:
        return True
    if role == UserRole.COURIER:
        return str(user.pk) == str(courier_id)
    if role == UserRole.BUSINESS:
        return Delivery.objects.filter(
            business=user,
            assigned_to_id=courier_id,
            status__in=ACTIVE_STATUSES,
        ).exists()
    return False
