"""
LOGISTICS App - Deliveries & Courier Locations

Handles: Deliveries and their lifecycle fields, the current-position
slot of every courier, and the coarse location history.
"""

import uuid
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


class DeliveryStatus(models.TextChoices):
    """Delivery status enumeration, in lifecycle order."""
    POSTED = 'posted', 'Posted'
    ACCEPTED = 'accepted', 'Accepted'
    PICKED_UP = 'picked_up', 'Picked up'
    DELIVERED = 'delivered', 'Delivered'


ACTIVE_STATUSES = (DeliveryStatus.ACCEPTED, DeliveryStatus.PICKED_UP)


class Delivery(models.Model):
    """
    A business's request to move an item to a destination.

    Lifecycle: POSTED -> ACCEPTED -> PICKED_UP -> DELIVERED

    Business name, address and coordinates are a snapshot of the business
    profile at creation time. ``payment`` is computed once at creation and
    never recomputed. Status changes go through
    ``logistics.services.lifecycle`` only.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # === PARTIES ===
    business = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='deliveries',
        verbose_name="Business"
    )
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='assigned_deliveries',
        verbose_name="Assigned courier"
    )
    delivered_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='completed_deliveries',
        verbose_name="Delivered by"
    )

    # === PICKUP (snapshot of the business profile) ===
    business_name = models.CharField(max_length=200, verbose_name="Business name")
    business_address = models.CharField(max_length=300, blank=True, verbose_name="Pickup address")
    business_latitude = models.FloatField()
    business_longitude = models.FloatField()

    # === DESTINATION ===
    destination_address = models.CharField(max_length=300, verbose_name="Destination address")
    destination_latitude = models.FloatField()
    destination_longitude = models.FloatField()
    destination_place_id = models.CharField(max_length=255, blank=True)

    # === DESCRIPTION & PRICE ===
    item = models.CharField(max_length=200, verbose_name="Item")
    distance_km = models.FloatField(default=0.0, verbose_name="Distance (km)")
    payment = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        verbose_name="Payment"
    )

    status = models.CharField(
        max_length=20,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.POSTED,
        db_index=True,
        verbose_name="Status"
    )

    # === TIMESTAMPS ===
    created_at = models.DateTimeField(default=timezone.now, editable=False, db_index=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    picked_up_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Delivery"
        verbose_name_plural = "Deliveries"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='delivery_status_created_idx'),
            models.Index(fields=['assigned_to', 'status'], name='delivery_courier_status_idx'),
            models.Index(fields=['business', 'created_at'], name='delivery_business_created_idx'),
        ]

    def __str__(self):
        return f"Delivery {str(self.id)[:8]} - {self.item} ({self.status})"

    @property
    def business_location(self):
        return (self.business_latitude, self.business_longitude)

    @property
    def destination_location(self):
        return (self.destination_latitude, self.destination_longitude)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def clean(self):
        """Cross-field lifecycle invariants."""
        if self.status == DeliveryStatus.POSTED and self.assigned_to_id is not None:
            raise ValidationError({'assigned_to': 'A posted delivery cannot be assigned.'})
        if self.status != DeliveryStatus.POSTED and self.assigned_to_id is None:
            raise ValidationError({'assigned_to': 'Only posted deliveries may be unassigned.'})
        if self.status != DeliveryStatus.DELIVERED and self.delivered_by_id is not None:
            raise ValidationError({'delivered_by': 'Set only once the delivery is delivered.'})
        if self.status == DeliveryStatus.DELIVERED and self.delivered_by_id != self.assigned_to_id:
            raise ValidationError({'delivered_by': 'Must be the assigned courier.'})
        if self.payment is not None and self.payment < 0:
            raise ValidationError({'payment': 'Payment cannot be negative.'})


class CourierLocation(models.Model):
    """
    Current-position slot, one per courier.

    Overwritten in place on every update. Only the courier's own device
    writes it, so last write wins.
    """

    courier = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='current_location'
    )
    latitude = models.FloatField()
    longitude = models.FloatField()
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = "Courier location"
        verbose_name_plural = "Courier locations"

    def __str__(self):
        return f"{self.courier_id} @ ({self.latitude:.5f}, {self.longitude:.5f})"

    @property
    def point(self):
        return (self.latitude, self.longitude)


class CourierLocationPing(models.Model):
    """Append-only location history for replay and analytics."""

    id = models.BigAutoField(primary_key=True)
    courier = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='location_pings'
    )
    latitude = models.FloatField()
    longitude = models.FloatField()
    recorded_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        verbose_name = "Courier location ping"
        verbose_name_plural = "Courier location pings"
        ordering = ['-recorded_at']
        indexes = [
            models.Index(fields=['courier', 'recorded_at'], name='ping_courier_recorded_idx'),
        ]

    def __str__(self):
        return f"{self.courier_id} @ {self.recorded_at:%Y-%m-%d %H:%M}"
