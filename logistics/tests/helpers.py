"""
Shared fixtures for the logistics tests.
"""

from datetime import datetime

from django.utils import timezone

from core.models import CourierProfile, User, UserRole
from core.onboarding import select_role
from logistics.services import lifecycle
from logistics.services.tracking import update_courier_location

PASSWORD = 'Str0ng-pass!word'

TEL_AVIV = (32.0853, 34.7818)
HAIFA = (32.7940, 34.9896)
JERUSALEM = (31.7683, 35.2137)

KM_PER_DEGREE_LAT = 111.195


def north_of(point, km):
    """Point ``km`` kilometres due north of ``point``."""
    return (point[0] + km / KM_PER_DEGREE_LAT, point[1])


def tuesday_at(hour, minute=0):
    """2026-01-06 is a Tuesday."""
    return timezone.make_aware(datetime(2026, 1, 6, hour, minute))


def make_business(email='shop@example.com', location=TEL_AVIV, name='Tel Aviv Bakery'):
    user = User.objects.create_user(email=email, password=PASSWORD)
    return select_role(user, UserRole.BUSINESS, {
        'business_name': name,
        'business_address': f'{name} street 1',
        'latitude': location[0] if location else None,
        'longitude': location[1] if location else None,
    })


def make_courier(email='rider@example.com', name='Dana Levi', location=None):
    user = User.objects.create_user(email=email, password=PASSWORD)
    courier = select_role(user, UserRole.COURIER, {'courier_name': name})
    if location is not None:
        update_courier_location(courier, location[0], location[1])
    return courier


def make_admin(email='admin@example.com'):
    return User.objects.create_superuser(email=email, password=PASSWORD)


def post_delivery(business, destination=HAIFA, item='Box of pastries', now=None):
    return lifecycle.create_delivery(
        business=business,
        item=item,
        destination_address='Destination street 9',
        destination_latitude=destination[0],
        destination_longitude=destination[1],
        now=now or tuesday_at(10),
    )


def balance_of(courier):
    return CourierProfile.objects.get(user=courier).balance
