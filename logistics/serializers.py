"""
Logistics App Serializers - Deliveries & Courier Locations
"""

from rest_framework import serializers

from .models import CourierLocation, CourierLocationPing, Delivery, DeliveryStatus
from .services.visibility import available_actions, navigation_target


class DeliverySerializer(serializers.ModelSerializer):
    """
    Full serializer for Delivery model.

    ``actions`` depends on the viewer and is only filled when the request
    is in the serializer context; broadcast snapshots leave it empty.
    """

    business_id = serializers.UUIDField(read_only=True)
    assigned_to = serializers.UUIDField(source='assigned_to_id', read_only=True, allow_null=True)
    delivered_by = serializers.UUIDField(source='delivered_by_id', read_only=True, allow_null=True)
    business_location = serializers.SerializerMethodField()
    destination_location = serializers.SerializerMethodField()
    navigation_target = serializers.SerializerMethodField()
    actions = serializers.SerializerMethodField()

    class Meta:
        model = Delivery
        fields = [
            'id', 'business_id', 'business_name', 'business_address', 'business_location',
            'destination_address', 'destination_location', 'destination_place_id',
            'item', 'distance_km', 'payment', 'status',
            'assigned_to', 'delivered_by', 'navigation_target', 'actions',
            'created_at', 'accepted_at', 'picked_up_at', 'delivered_at',
        ]
        read_only_fields = fields

    def get_business_location(self, obj):
        return {'latitude': obj.business_latitude, 'longitude': obj.business_longitude}

    def get_destination_location(self, obj):
        return {'latitude': obj.destination_latitude, 'longitude': obj.destination_longitude}

    def get_navigation_target(self, obj):
        return navigation_target(obj)

    def get_actions(self, obj):
        request = self.context.get('request')
        if request is None or not request.user.is_authenticated:
            return []
        return available_actions(obj.status, obj.assigned_to_id, request.user.pk, request.user.role)


class DeliveryCreateSerializer(serializers.Serializer):
    """Input for posting a delivery. The destination comes from address lookup."""

    item = serializers.CharField(max_length=200)
    destination_address = serializers.CharField(max_length=300)
    destination_latitude = serializers.FloatField(min_value=-90, max_value=90)
    destination_longitude = serializers.FloatField(min_value=-180, max_value=180)
    destination_place_id = serializers.CharField(max_length=255, required=False, allow_blank=True)

    def validate_item(self, value):
        if not value.strip():
            raise serializers.ValidationError("Item is required.")
        return value.strip()


class QuoteRequestSerializer(serializers.Serializer):
    """Price preview for the create form."""

    destination_latitude = serializers.FloatField(min_value=-90, max_value=90)
    destination_longitude = serializers.FloatField(min_value=-180, max_value=180)


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=DeliveryStatus.choices)


class CourierLocationUpdateSerializer(serializers.Serializer):
    """Serializer for updating courier GPS location."""

    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)


class CourierLocationSerializer(serializers.ModelSerializer):
    courier_id = serializers.UUIDField(read_only=True)
    courier_name = serializers.SerializerMethodField()

    class Meta:
        model = CourierLocation
        fields = ['courier_id', 'courier_name', 'latitude', 'longitude', 'updated_at']

    def get_courier_name(self, obj):
        return obj.courier.name


class CourierLocationPingSerializer(serializers.ModelSerializer):

    class Meta:
        model = CourierLocationPing
        fields = ['latitude', 'longitude', 'recorded_at']


class DeliveryFeedQuerySerializer(serializers.Serializer):
    """Query parameters of the courier feed."""

    lat = serializers.FloatField(min_value=-90, max_value=90, required=False)
    lng = serializers.FloatField(min_value=-180, max_value=180, required=False)
    r = serializers.FloatField(min_value=0, required=False)
    zoom = serializers.IntegerField(min_value=0, max_value=22, required=False)
    status = serializers.ChoiceField(choices=DeliveryStatus.choices, required=False)

    def validate(self, attrs):
        if ('lat' in attrs) != ('lng' in attrs):
            raise serializers.ValidationError({'lat': 'lat and lng must be given together.'})
        return attrs
