"""
Logistics App Views - Deliveries, claims, status changes and courier locations
"""

import logging

from django.shortcuts import get_object_or_404
from django.utils.dateparse import parse_datetime
from rest_framework import generics, mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.response import Response
from rest_framework.views import APIView

from core.models import BusinessProfile, UserRole
from core.permissions import HasSelectedRole, IsAdmin, IsBusiness, IsCourier

from .filters import DeliveryFilter
from .models import Delivery
from .serializers import (
    CourierLocationPingSerializer,
    CourierLocationSerializer,
    CourierLocationUpdateSerializer,
    DeliveryCreateSerializer,
    DeliveryFeedQuerySerializer,
    DeliverySerializer,
    QuoteRequestSerializer,
    StatusUpdateSerializer,
)
from .services import lifecycle, tracking, visibility
from .services.pricing import get_pricing_engine

logger = logging.getLogger(__name__)


def error_response(exc: lifecycle.DeliveryError) -> Response:
    """Translate a lifecycle error into the API error body."""
    body = {'error': str(exc), 'code': exc.code}
    if exc.errors:
        body['errors'] = exc.errors
    return Response(body, status=exc.http_status)


class DeliveryViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    """
    ViewSet for deliveries.

    - GET    /deliveries/               role-scoped list (couriers: radius feed)
    - POST   /deliveries/               business posts a delivery
    - GET    /deliveries/<id>/          one delivery, if visible to the caller
    - PATCH  /deliveries/<id>/          assigned courier advances the status
    - POST   /deliveries/<id>/accept/   courier claims a posted delivery
    - POST   /deliveries/quote/         business price preview
    - GET    /deliveries/<id>/courier-location/
    """

    serializer_class = DeliverySerializer
    permission_classes = [permissions.IsAuthenticated, HasSelectedRole]
    filterset_class = DeliveryFilter
    ordering_fields = ['created_at', 'payment', 'distance_km']
    ordering = ['-created_at']
    lookup_value_regex = '[0-9a-fA-F-]{36}'

    def get_queryset(self):
        user = self.request.user
        if self.action != 'list':
            return visibility.deliveries_for(user)

        params = DeliveryFeedQuerySerializer(data=self.request.query_params)
        params.is_valid(raise_exception=True)
        data = params.validated_data

        area = None
        if user.role == UserRole.COURIER:
            area = visibility.resolve_search_area(
                user,
                lat=data.get('lat'),
                lng=data.get('lng'),
                radius_km=data.get('r'),
                zoom=data.get('zoom'),
            )
        return visibility.deliveries_for(user, status=data.get('status'), area=area)

    def _get_visible(self, pk) -> Delivery:
        delivery = get_object_or_404(Delivery, pk=pk)
        if not visibility.can_view_delivery(self.request.user, delivery):
            # Hidden rows look exactly like missing ones
            raise NotFound()
        return delivery

    def retrieve(self, request, pk=None):
        delivery = self._get_visible(pk)
        return Response(self.get_serializer(delivery).data)

    def create(self, request):
        """Post a new delivery. Payment is computed here, once."""
        if request.user.role != UserRole.BUSINESS:
            return Response(
                {'error': 'only businesses can create deliveries', 'code': 'forbidden'},
                status=status.HTTP_403_FORBIDDEN
            )

        serializer = DeliveryCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            delivery = lifecycle.create_delivery(business=request.user, **serializer.validated_data)
        except lifecycle.DeliveryError as e:
            return error_response(e)

        return Response(
            self.get_serializer(delivery).data,
            status=status.HTTP_201_CREATED
        )

    def partial_update(self, request, pk=None):
        """Advance the status: accepted -> picked_up -> delivered."""
        serializer = StatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            delivery = lifecycle.advance_delivery(pk, request.user, serializer.validated_data['status'])
        except lifecycle.DeliveryError as e:
            return error_response(e)

        return Response(self.get_serializer(delivery).data)

    @action(detail=True, methods=['post'], permission_classes=[permissions.IsAuthenticated, IsCourier])
    def accept(self, request, pk=None):
        """Claim a posted delivery. Exactly one concurrent caller wins; the rest get 409."""
        try:
            delivery = lifecycle.accept_delivery(pk, request.user)
        except lifecycle.DeliveryError as e:
            return error_response(e)

        return Response(self.get_serializer(delivery).data)

    @action(detail=False, methods=['post'], permission_classes=[permissions.IsAuthenticated, IsBusiness])
    def quote(self, request):
        """Price preview from the business location to a destination."""
        serializer = QuoteRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        profile = BusinessProfile.objects.filter(user=request.user).first()
        origin = profile.location if profile else None
        destination = (
            serializer.validated_data['destination_latitude'],
            serializer.validated_data['destination_longitude'],
        )
        quote = get_pricing_engine().quote(origin, destination)
        return Response(quote.as_dict())

    @action(detail=True, methods=['get'], url_path='courier-location')
    def courier_location(self, request, pk=None):
        """Current position of the courier working on this delivery."""
        delivery = self._get_visible(pk)
        if not delivery.is_active:
            return Response(
                {'error': 'delivery has no courier on the way', 'code': 'not_active'},
                status=status.HTTP_404_NOT_FOUND
            )

        location = tracking.current_location(delivery.assigned_to_id)
        if location is None:
            return Response(
                {'error': 'courier location unknown', 'code': 'no_location'},
                status=status.HTTP_404_NOT_FOUND
            )
        return Response(CourierLocationSerializer(location).data)


class CourierLocationView(APIView):
    """
    Courier current-position slot.

    POST /api/courier/location/  {"latitude": 32.08, "longitude": 34.78}
    GET  /api/courier/location/
    """

    permission_classes = [permissions.IsAuthenticated, IsCourier]

    def post(self, request):
        """Overwrite the caller's location."""
        serializer = CourierLocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            location = tracking.update_courier_location(
                request.user,
                serializer.validated_data['latitude'],
                serializer.validated_data['longitude'],
            )
        except tracking.LocationError as e:
            return Response({'error': str(e), 'code': 'invalid'}, status=status.HTTP_400_BAD_REQUEST)

        return Response(CourierLocationSerializer(location).data)

    def get(self, request):
        location = tracking.current_location(request.user.pk)
        if location is None:
            return Response(
                {'error': 'no location reported yet', 'code': 'no_location'},
                status=status.HTTP_404_NOT_FOUND
            )
        return Response(CourierLocationSerializer(location).data)


class CourierLocationListView(APIView):
    """All courier positions for the admin map (Admin only)."""

    permission_classes = [permissions.IsAuthenticated, IsAdmin]

    def get(self, request):
        max_age = request.query_params.get('max_age_minutes')
        try:
            max_age = int(max_age) if max_age else None
        except ValueError:
            return Response(
                {'error': 'max_age_minutes must be an integer', 'code': 'invalid'},
                status=status.HTTP_400_BAD_REQUEST
            )

        locations = tracking.active_courier_locations(max_age_minutes=max_age)
        return Response(CourierLocationSerializer(locations, many=True).data)


class CourierLocationHistoryView(generics.ListAPIView):
    """Recorded pings of one courier, oldest first (Admin only)."""

    serializer_class = CourierLocationPingSerializer
    permission_classes = [permissions.IsAuthenticated, IsAdmin]
    filter_backends = []

    def get_queryset(self):
        since = self.request.query_params.get('since')
        until = self.request.query_params.get('until')
        return tracking.location_history(
            self.kwargs['courier_id'],
            since=parse_datetime(since) if since else None,
            until=parse_datetime(until) if until else None,
        )
