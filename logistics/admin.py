"""
Django Admin configuration for LOGISTICS app.

Deliveries are observed here, never advanced: status and the lifecycle
fields are read-only.
"""

from django.contrib import admin
from .models import CourierLocation, CourierLocationPing, Delivery


@admin.register(Delivery)
class DeliveryAdmin(admin.ModelAdmin):
    list_display = (
        'short_id', 'item', 'business_name', 'status',
        'assigned_to', 'payment', 'distance_km', 'created_at'
    )
    list_filter = ('status', 'created_at')
    search_fields = ('item', 'business_name', 'destination_address')
    ordering = ('-created_at',)
    readonly_fields = (
        'id', 'business', 'status', 'assigned_to', 'delivered_by', 'payment',
        'distance_km', 'business_name', 'business_address',
        'business_latitude', 'business_longitude',
        'created_at', 'accepted_at', 'picked_up_at', 'delivered_at', 'updated_at',
    )

    @admin.display(description='ID')
    def short_id(self, obj):
        return str(obj.id)[:8]

    def has_add_permission(self, request):
        return False


@admin.register(CourierLocation)
class CourierLocationAdmin(admin.ModelAdmin):
    list_display = ('courier', 'latitude', 'longitude', 'updated_at')
    ordering = ('-updated_at',)
    readonly_fields = ('courier', 'latitude', 'longitude', 'updated_at')


@admin.register(CourierLocationPing)
class CourierLocationPingAdmin(admin.ModelAdmin):
    list_display = ('courier', 'latitude', 'longitude', 'recorded_at')
    list_filter = ('recorded_at',)
    ordering = ('-recorded_at',)
