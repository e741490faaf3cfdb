"""
LOGISTICS App - Courier live location

The current-position slot is overwritten on every update. A history
ping is appended at most once per LOCATION_HISTORY_INTERVAL_SECONDS per
courier; the history is never read by real-time logic.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from django.conf import settings
from django.core.cache import cache
from django.db import transaction
from django.utils import timezone

from core.models import UserRole
from logistics.models import ACTIVE_STATUSES, CourierLocation, CourierLocationPing, Delivery
from logistics.utils import is_valid_coordinate

logger = logging.getLogger(__name__)


class LocationError(ValueError):
    """Rejected location update."""


def _history_gate_key(courier_id) -> str:
    return f'courier-location-history:{courier_id}'


def should_record_history(courier_id) -> bool:
    """
    True at most once per history interval per courier.

    ``cache.add`` only writes when the key is absent, so the first
    update of each window wins.
    """
    interval = settings.LOCATION_HISTORY_INTERVAL_SECONDS
    if interval <= 0:
        return True
    return cache.add(_history_gate_key(courier_id), 1, timeout=interval)


def update_courier_location(courier, latitude: float, longitude: float,
                            now: Optional[datetime] = None) -> CourierLocation:
    """
    Overwrite the courier's slot and push it to subscribers.

    Raises:
        LocationError: caller is not a courier or coordinates are invalid
    """
    if courier.role != UserRole.COURIER:
        raise LocationError("only couriers publish a location")
    if not is_valid_coordinate(latitude, longitude):
        raise LocationError("invalid coordinates")

    now = now or timezone.now()
    location, _ = CourierLocation.objects.update_or_create(
        courier=courier,
        defaults={'latitude': latitude, 'longitude': longitude, 'updated_at': now},
    )

    if should_record_history(courier.pk):
        CourierLocationPing.objects.create(
            courier=courier, latitude=latitude, longitude=longitude, recorded_at=now
        )

    active_ids = list(
        Delivery.objects.filter(assigned_to=courier, status__in=ACTIVE_STATUSES)
        .values_list('id', flat=True)
    )

    def _broadcast():
        from logistics.events import broadcast_courier_location
        broadcast_courier_location(location, active_ids)

    transaction.on_commit(_broadcast)
    return location


def current_location(courier_id) -> Optional[CourierLocation]:
    return CourierLocation.objects.filter(courier_id=courier_id).first()


def active_courier_locations(max_age_minutes: Optional[int] = None) -> List[CourierLocation]:
    """All courier slots, optionally only those updated recently."""
    qs = CourierLocation.objects.select_related('courier', 'courier__courier_profile')
    if max_age_minutes:
        qs = qs.filter(updated_at__gte=timezone.now() - timedelta(minutes=max_age_minutes))
    return list(qs.order_by('-updated_at'))


def location_history(courier_id, since: Optional[datetime] = None, until: Optional[datetime] = None):
    qs = CourierLocationPing.objects.filter(courier_id=courier_id)
    if since:
        qs = qs.filter(recorded_at__gte=since)
    if until:
        qs = qs.filter(recorded_at__lte=until)
    return qs.order_by('recorded_at')


def prune_history(retention_days: Optional[int] = None, now: Optional[datetime] = None) -> int:
    """Delete pings older than the retention window. Returns rows removed."""
    retention_days = settings.LOCATION_HISTORY_RETENTION_DAYS if retention_days is None else retention_days
    cutoff = (now or timezone.now()) - timedelta(days=retention_days)
    deleted, _ = CourierLocationPing.objects.filter(recorded_at__lt=cutoff).delete()
    if deleted:
        logger.info(f"[TRACKING] Pruned {deleted} location pings older than {cutoff:%Y-%m-%d}")
    return deleted
