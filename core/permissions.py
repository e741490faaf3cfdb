"""
Role-based DRF permission classes.
"""

from rest_framework import permissions

from .models import UserRole


class HasSelectedRole(permissions.BasePermission):
    """Authenticated and past onboarding."""

    message = 'select a role before using this endpoint'

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.role)


class IsAdmin(permissions.BasePermission):
    """Permission for admin users only."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == UserRole.ADMIN


class IsBusiness(permissions.BasePermission):
    """Permission for business users only."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == UserRole.BUSINESS


class IsCourier(permissions.BasePermission):
    """Permission for courier users only."""

    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == UserRole.COURIER
