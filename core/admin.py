"""
Django Admin configuration for CORE app.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import BusinessProfile, CourierProfile, User


class BusinessProfileInline(admin.StackedInline):
    model = BusinessProfile
    can_delete = False
    extra = 0


class CourierProfileInline(admin.StackedInline):
    model = CourierProfile
    can_delete = False
    extra = 0
    # Credited only by completed deliveries
    readonly_fields = ('balance',)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Custom admin for User model with email-based auth."""

    list_display = ('email', 'display_name', 'role', 'is_active', 'date_joined')
    list_filter = ('role', 'is_active', 'is_staff')
    search_fields = ('email', 'display_name')
    ordering = ('-date_joined',)
    # Role changes go through the init_admin command
    readonly_fields = ('role', 'role_assigned_at', 'date_joined', 'last_login')
    inlines = [BusinessProfileInline, CourierProfileInline]

    fieldsets = (
        (None, {
            'fields': ('email', 'password')
        }),
        ('Profile', {
            'fields': ('display_name', 'role', 'role_assigned_at')
        }),
        ('Permissions', {
            'fields': ('is_active', 'is_staff', 'is_superuser', 'groups', 'user_permissions'),
            'classes': ('collapse',)
        }),
        ('Dates', {
            'fields': ('last_login', 'date_joined'),
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'display_name', 'password1', 'password2'),
        }),
    )
