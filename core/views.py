"""
Core App Views - Accounts, onboarding and admin listings
"""

import logging

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import Count, Q
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from logistics.models import DeliveryStatus

from .models import BusinessProfile, CourierProfile, UserRole
from .onboarding import OnboardingError, RoleAlreadySelected, select_role
from .permissions import IsAdmin
from .serializers import (
    BusinessProfileSerializer,
    BusinessSummarySerializer,
    CourierProfileSerializer,
    CourierSummarySerializer,
    RoleSelectionSerializer,
    UserCreateSerializer,
    UserSerializer,
)

logger = logging.getLogger(__name__)

User = get_user_model()


class UserViewSet(mixins.CreateModelMixin,
                  mixins.ListModelMixin,
                  mixins.RetrieveModelMixin,
                  viewsets.GenericViewSet):
    """
    ViewSet for accounts.

    - Create: Public (registration, role pending)
    - List/Retrieve: Admin only
    - me / me/role: the signed-in account
    - couriers / businesses: Admin only
    """

    queryset = User.objects.all()
    serializer_class = UserSerializer

    def get_permissions(self):
        if self.action == 'create':
            return [permissions.AllowAny()]
        if self.action in ['list', 'retrieve', 'couriers', 'businesses']:
            return [permissions.IsAuthenticated(), IsAdmin()]
        return [permissions.IsAuthenticated()]

    def get_serializer_class(self):
        if self.action == 'create':
            return UserCreateSerializer
        if self.action == 'select_role':
            return RoleSelectionSerializer
        return UserSerializer

    def get_queryset(self):
        return User.objects.select_related('business_profile', 'courier_profile')

    @action(detail=False, methods=['get', 'patch'])
    def me(self, request):
        """Get or update the current account and its role profile."""
        user = request.user
        if request.method == 'PATCH':
            serializer = UserSerializer(user, data=request.data, partial=True)

            profile = user.profile
            if isinstance(profile, BusinessProfile):
                profile_serializer = BusinessProfileSerializer(profile, data=request.data, partial=True)
            elif isinstance(profile, CourierProfile):
                profile_serializer = CourierProfileSerializer(profile, data=request.data, partial=True)
            else:
                profile_serializer = None

            # Both halves validate before either is written
            serializer.is_valid(raise_exception=True)
            if profile_serializer is not None:
                profile_serializer.is_valid(raise_exception=True)

            with transaction.atomic():
                serializer.save()
                if profile_serializer is not None:
                    profile_serializer.save()

        user = self.get_queryset().get(pk=user.pk)
        return Response(UserSerializer(user).data)

    @action(detail=False, methods=['post'], url_path='me/role')
    def select_role(self, request):
        """Pick the account role during onboarding. Allowed once."""
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        role = data.pop('role')

        try:
            user = select_role(request.user, role, data)
        except RoleAlreadySelected as e:
            return Response(
                {'error': str(e), 'code': e.code},
                status=status.HTTP_409_CONFLICT
            )
        except OnboardingError as e:
            return Response(
                {'error': str(e), 'code': e.code},
                status=status.HTTP_400_BAD_REQUEST
            )

        user = self.get_queryset().get(pk=user.pk)
        return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'])
    def couriers(self, request):
        """List all couriers with balance and delivery counters (Admin only)."""
        couriers = (
            User.objects.filter(role=UserRole.COURIER)
            .select_related('courier_profile')
            .annotate(
                active_deliveries=Count(
                    'assigned_deliveries',
                    filter=Q(assigned_deliveries__status__in=[
                        DeliveryStatus.ACCEPTED, DeliveryStatus.PICKED_UP
                    ]),
                    distinct=True,
                ),
                completed_deliveries=Count('completed_deliveries', distinct=True),
            )
            .order_by('-courier_profile__balance', 'email')
        )
        page = self.paginate_queryset(couriers)
        if page is not None:
            return self.get_paginated_response(CourierSummarySerializer(page, many=True).data)
        return Response(CourierSummarySerializer(couriers, many=True).data)

    @action(detail=False, methods=['get'])
    def businesses(self, request):
        """List all businesses with their delivery totals (Admin only)."""
        businesses = (
            User.objects.filter(role=UserRole.BUSINESS)
            .select_related('business_profile')
            .annotate(deliveries_count=Count('deliveries'))
            .order_by('business_profile__business_name', 'email')
        )
        page = self.paginate_queryset(businesses)
        if page is not None:
            return self.get_paginated_response(BusinessSummarySerializer(page, many=True).data)
        return Response(BusinessSummarySerializer(businesses, many=True).data)
