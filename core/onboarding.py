"""
Account onboarding for the dispatch platform

Two-phase account readiness:
1. UNAUTHENTICATED: no identity
2. ROLE_PENDING: signed in, no role chosen yet (only onboarding is allowed)
3. ROLE_KNOWN: role chosen once, matching profile exists

Role selection is a one-time operation enforced here, not in the client.
Administrative role changes go through ``change_role``.
"""

import enum
import logging
from typing import Optional

from django.db import transaction
from django.utils import timezone

from core.models import BusinessProfile, CourierProfile, User, UserRole

logger = logging.getLogger(__name__)


class AccountState(str, enum.Enum):
    UNAUTHENTICATED = 'unauthenticated'
    ROLE_PENDING = 'role_pending'
    ROLE_KNOWN = 'role_known'


class OnboardingError(ValueError):
    """Base error for onboarding failures."""
    code = 'invalid'


class RoleAlreadySelected(OnboardingError):
    code = 'role_already_selected'


class RoleNotSelectable(OnboardingError):
    code = 'role_not_selectable'


# Roles a user may pick for themselves. Admin is granted only by init_admin.
SELF_SERVICE_ROLES = (UserRole.BUSINESS, UserRole.COURIER)


def account_state(user) -> AccountState:
    """Classify a request user into one of the readiness phases."""
    if user is None or not getattr(user, 'is_authenticated', False):
        return AccountState.UNAUTHENTICATED
    if not user.role:
        return AccountState.ROLE_PENDING
    return AccountState.ROLE_KNOWN


def _create_profile(user: User, role: str, profile: dict):
    if role == UserRole.BUSINESS:
        return BusinessProfile.objects.create(
            user=user,
            business_name=profile.get('business_name') or user.display_name or user.email,
            business_address=profile.get('business_address', ''),
            latitude=profile.get('latitude'),
            longitude=profile.get('longitude'),
            place_id=profile.get('place_id', ''),
        )
    if role == UserRole.COURIER:
        return CourierProfile.objects.create(
            user=user,
            courier_name=profile.get('courier_name') or user.display_name or user.email,
        )
    return None


def _drop_foreign_profiles(user: User, role: Optional[str]):
    """Remove profile variants that do not match ``role``."""
    if role != UserRole.BUSINESS:
        BusinessProfile.objects.filter(user=user).delete()
    if role != UserRole.COURIER:
        CourierProfile.objects.filter(user=user).delete()


@transaction.atomic
def select_role(user: User, role: str, profile: Optional[dict] = None) -> User:
    """
    Pick the account role, once.

    Args:
        user: The signed-in account, currently role-pending
        role: 'business' or 'courier'
        profile: Variant fields (business_name, business_address,
            latitude, longitude, place_id / courier_name)

    Raises:
        RoleNotSelectable: role is not self-service
        RoleAlreadySelected: the account already has a role
    """
    if role not in SELF_SERVICE_ROLES:
        raise RoleNotSelectable(f"role '{role}' cannot be self-selected")

    # Lock the row so two concurrent onboarding submits cannot both win
    locked = User.objects.select_for_update().get(pk=user.pk)
    if locked.role:
        raise RoleAlreadySelected(f"role already set to '{locked.role}'")

    locked.role = role
    locked.role_assigned_at = timezone.now()
    locked.save(update_fields=['role', 'role_assigned_at'])
    _create_profile(locked, role, profile or {})

    logger.info(f"[ONBOARDING] {locked.email} selected role {role}")
    return locked


@transaction.atomic
def change_role(user: User, role: Optional[str], profile: Optional[dict] = None) -> User:
    """
    Administrative role change.

    Passing ``role=None`` returns the account to the role-pending phase.
    Profile variants not matching the new role are removed, the matching
    one is created when missing.
    """
    locked = User.objects.select_for_update().get(pk=user.pk)
    previous = locked.role

    locked.role = role
    locked.role_assigned_at = timezone.now() if role else None
    locked.is_staff = role == UserRole.ADMIN
    locked.save(update_fields=['role', 'role_assigned_at', 'is_staff'])

    _drop_foreign_profiles(locked, role)
    if role == UserRole.BUSINESS and not BusinessProfile.objects.filter(user=locked).exists():
        _create_profile(locked, role, profile or {})
    elif role == UserRole.COURIER and not CourierProfile.objects.filter(user=locked).exists():
        _create_profile(locked, role, profile or {})

    logger.info(f"[ONBOARDING] {locked.email} role changed {previous} -> {role}")
    return locked
