"""
CORE App - Accounts for the dispatch platform

Handles: Users and their role-specific profiles (Business, Courier, Admin)

A user starts with no role. Onboarding picks exactly one role and creates
the matching profile; the profile tables are the variants of a tagged
union discriminated by ``User.role``.
"""

import uuid
from decimal import Decimal

from django.contrib.auth.models import AbstractBaseUser, BaseUserManager, PermissionsMixin
from django.db import models
from django.utils import timezone


class UserRole(models.TextChoices):
    """User role enumeration."""
    BUSINESS = 'business', 'Business'
    COURIER = 'courier', 'Courier'
    ADMIN = 'admin', 'Admin'


class UserManager(BaseUserManager):
    """Custom user manager for email-based authentication."""

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email is required')

        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('role', UserRole.ADMIN)
        extra_fields.setdefault('role_assigned_at', timezone.now())

        if extra_fields.get('is_staff') is not True:
            raise ValueError('Superuser must have is_staff=True.')
        if extra_fields.get('is_superuser') is not True:
            raise ValueError('Superuser must have is_superuser=True.')

        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, PermissionsMixin):
    """
    Account record, one per identity.

    ``role`` stays null until onboarding; it is set exactly once through
    ``core.onboarding.select_role``. Only the administrative ``init_admin``
    command may change it afterwards.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(unique=True, verbose_name="Email")
    display_name = models.CharField(max_length=150, blank=True, verbose_name="Display name")

    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        null=True,
        blank=True,
        db_index=True,
        verbose_name="Role"
    )
    role_assigned_at = models.DateTimeField(null=True, blank=True)

    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)
    date_joined = models.DateTimeField(default=timezone.now)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    class Meta:
        verbose_name = "User"
        verbose_name_plural = "Users"
        ordering = ['-date_joined']

    def __str__(self):
        return f"{self.display_name or self.email} ({self.role or 'pending'})"

    @property
    def is_business(self) -> bool:
        return self.role == UserRole.BUSINESS

    @property
    def is_courier(self) -> bool:
        return self.role == UserRole.COURIER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def profile(self):
        """The role-specific variant, or None for admins and pending users."""
        if self.role == UserRole.BUSINESS:
            return getattr(self, 'business_profile', None)
        if self.role == UserRole.COURIER:
            return getattr(self, 'courier_profile', None)
        return None

    @property
    def name(self) -> str:
        """Role-specific name shown in dashboards."""
        profile = self.profile
        if isinstance(profile, BusinessProfile) and profile.business_name:
            return profile.business_name
        if isinstance(profile, CourierProfile) and profile.courier_name:
            return profile.courier_name
        return self.display_name or self.email


class BusinessProfile(models.Model):
    """Business variant: pickup address and its coordinates."""

    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='business_profile'
    )
    business_name = models.CharField(max_length=200, verbose_name="Business name")
    business_address = models.CharField(max_length=300, blank=True, verbose_name="Address")
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    place_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Address-provider reference for the pickup location"
    )

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Business profile"
        verbose_name_plural = "Business profiles"

    def __str__(self):
        return self.business_name

    @property
    def location(self):
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)


class CourierProfile(models.Model):
    """
    Courier variant.

    ``balance`` is the running total of completed-delivery payments.
    Only the delivery lifecycle credits it.
    """

    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name='courier_profile'
    )
    courier_name = models.CharField(max_length=150, verbose_name="Courier name")
    balance = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        verbose_name="Balance"
    )

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Courier profile"
        verbose_name_plural = "Courier profiles"

    def __str__(self):
        return f"{self.courier_name} ({self.balance})"
