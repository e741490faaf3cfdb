"""
Django management command to seed demo businesses, couriers and deliveries.

Usage:
    python manage.py seed_demo
    python manage.py seed_demo --couriers 5 --businesses 3 --history-pings 24 --seed 42

Insert-only: accounts that already exist are skipped, never edited.
Deliveries are generated for the businesses created in this run, spread
over the last three months and over every status. New couriers start
with the balance their seeded deliveries earned them.
"""

import random
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from core.models import BusinessProfile, CourierProfile, User, UserRole
from logistics.models import CourierLocation, CourierLocationPing, Delivery, DeliveryStatus
from logistics.services.pricing import get_pricing_engine
from logistics.utils import haversine_km

CITIES = [
    ('afula', 'Afula', 32.6091, 35.2892),
    ('telaviv', 'Tel Aviv', 32.0853, 34.7818),
    ('haifa', 'Haifa', 32.7940, 34.9896),
    ('jerusalem', 'Jerusalem', 31.7683, 35.2137),
    ('beersheva', 'Beer Sheva', 31.2529, 34.7915),
    ('netanya', 'Netanya', 32.3215, 34.8532),
    ('rishon', 'Rishon LeZion', 31.9730, 34.7925),
    ('eilat', 'Eilat', 29.5577, 34.9519),
    ('petah', 'Petah Tikva', 32.0871, 34.8878),
    ('holon', 'Holon', 32.0102, 34.7790),
    ('ashdod', 'Ashdod', 31.8044, 34.6553),
    ('herzliya', 'Herzliya', 32.1663, 34.8436),
]

# 20% posted, 20% accepted, 20% picked up, 40% delivered
STATUS_BUCKETS = [
    DeliveryStatus.POSTED, DeliveryStatus.POSTED,
    DeliveryStatus.ACCEPTED, DeliveryStatus.ACCEPTED,
    DeliveryStatus.PICKED_UP, DeliveryStatus.PICKED_UP,
    DeliveryStatus.DELIVERED, DeliveryStatus.DELIVERED,
    DeliveryStatus.DELIVERED, DeliveryStatus.DELIVERED,
]

FIRST_NAMES = [
    'Noa', 'Yael', 'Amit', 'Omer', 'Tamar', 'Itai', 'Maya', 'Daniel',
    'Shira', 'Eitan', 'Lior', 'Roni', 'Adi', 'Yonatan', 'Michal', 'Ariel',
]
LAST_NAMES = [
    'Cohen', 'Levi', 'Mizrahi', 'Peretz', 'Biton', 'Dahan', 'Avraham',
    'Friedman', 'Katz', 'Azoulay', 'Golan', 'Shapiro',
]
BUSINESS_KINDS = ['Bakery', 'Florist', 'Pharmacy', 'Books', 'Electronics', 'Deli', 'Hardware', 'Coffee']
ITEMS = [
    'Box of pastries', 'Flower bouquet', 'Prescription bag', 'Two paperbacks',
    'Phone charger', 'Catering tray', 'Toolbox', 'Coffee beans (1 kg)',
    'Birthday cake', 'Document envelope',
]


class Command(BaseCommand):
    help = 'Insert demo businesses, couriers, deliveries and courier locations (never edits existing data)'

    def add_arguments(self, parser):
        parser.add_argument('--couriers', type=int, default=20)
        parser.add_argument('--businesses', type=int, default=12)
        parser.add_argument('--history-pings', type=int, default=settings.SEED_HISTORY_PINGS)
        parser.add_argument('--step-min', type=int, default=settings.SEED_HISTORY_STEP_MINUTES)
        parser.add_argument('--seed', type=int, default=None, help='Random seed for repeatable data')

    def handle(self, *args, **options):
        self.rng = random.Random(options['seed'])
        self.engine = get_pricing_engine()
        self.now = timezone.now()
        password = settings.SEED_PASSWORD
        history_pings = max(0, options['history_pings'])
        step = timedelta(minutes=max(1, options['step_min']))

        with transaction.atomic():
            couriers, new_couriers = self.ensure_couriers(options['couriers'], password)
            new_businesses = self.ensure_businesses(options['businesses'], password)

            deliveries = []
            for business in new_businesses:
                deliveries.extend(self.create_deliveries(business, new_couriers))

            for courier in new_couriers:
                earned = sum(
                    (d.payment for d in deliveries
                     if d.status == DeliveryStatus.DELIVERED and d.delivered_by_id == courier.pk),
                    Decimal('0.00'),
                )
                CourierProfile.objects.filter(user=courier).update(balance=earned)

            locations = self.ensure_locations(couriers, deliveries, history_pings, step)

        self.stdout.write(self.style.SUCCESS(
            f'Seed complete: {len(new_couriers)} new couriers, {len(new_businesses)} new businesses, '
            f'{len(deliveries)} deliveries, {locations} new location slots'
        ))
        if new_couriers or new_businesses:
            self.stdout.write(f'Password for new demo accounts: {password}')

    # ============================================
    # Accounts
    # ============================================

    def person_name(self) -> str:
        return f'{self.rng.choice(FIRST_NAMES)} {self.rng.choice(LAST_NAMES)}'

    def ensure_couriers(self, count, password):
        couriers, created = [], []
        for i in range(1, count + 1):
            email = f'courier{i:02d}@example.com'
            user = User.objects.filter(email=email).first()
            if user is not None:
                self.stdout.write(f'⏭️  Exists: {email}')
                if user.role == UserRole.COURIER:
                    couriers.append(user)
                continue

            name = self.person_name()
            user = User.objects.create_user(
                email=email,
                password=password,
                display_name=name,
                role=UserRole.COURIER,
                role_assigned_at=self.now,
            )
            CourierProfile.objects.create(user=user, courier_name=name)
            couriers.append(user)
            created.append(user)
            self.stdout.write(self.style.SUCCESS(f'✅ Courier: {email} ({name})'))
        return couriers, created

    def ensure_businesses(self, count, password):
        created = []
        for i in range(1, count + 1):
            email = f'business{i:02d}@example.com'
            if User.objects.filter(email=email).exists():
                self.stdout.write(f'⏭️  Exists: {email}')
                continue

            # The first business always sits in Afula, the rest are spread out
            key, city, lat, lng = CITIES[0] if i == 1 else self.rng.choice(CITIES[1:])
            business_name = f'{city} {self.rng.choice(BUSINESS_KINDS)}'
            user = User.objects.create_user(
                email=email,
                password=password,
                display_name=business_name,
                role=UserRole.BUSINESS,
                role_assigned_at=self.now,
            )
            BusinessProfile.objects.create(
                user=user,
                business_name=business_name,
                business_address=f'{city}, Israel',
                latitude=lat,
                longitude=lng,
                place_id=f'demo-{key}',
            )
            created.append(user)
            self.stdout.write(self.style.SUCCESS(f'✅ Business: {email} ({business_name})'))
        return created

    # ============================================
    # Deliveries
    # ============================================

    def random_created_at(self):
        """A moment in the last 90 days, skewed towards the past."""
        span = timedelta(days=90)
        return self.now - span + span * (self.rng.random() ** 1.2)

    def create_deliveries(self, business, couriers):
        profile = business.business_profile
        deliveries = []
        for _ in range(self.rng.randint(10, 14)):
            _, city, dst_lat, dst_lng = self.rng.choice(CITIES)
            status = self.rng.choice(STATUS_BUCKETS)
            if not couriers:
                status = DeliveryStatus.POSTED

            created_at = self.random_created_at()
            km = haversine_km(profile.latitude, profile.longitude, dst_lat, dst_lng)
            courier = self.rng.choice(couriers) if status != DeliveryStatus.POSTED else None

            delivery = Delivery(
                business=business,
                business_name=profile.business_name,
                business_address=profile.business_address,
                business_latitude=profile.latitude,
                business_longitude=profile.longitude,
                destination_address=f'{city}, Israel',
                destination_latitude=dst_lat,
                destination_longitude=dst_lng,
                item=self.rng.choice(ITEMS),
                distance_km=round(km, 3),
                payment=self.engine.price_for_distance(max(1.0, km), created_at),
                status=status,
                assigned_to=courier,
                created_at=created_at,
            )
            if status != DeliveryStatus.POSTED:
                delivery.accepted_at = created_at + timedelta(minutes=self.rng.randint(2, 30))
            if status in (DeliveryStatus.PICKED_UP, DeliveryStatus.DELIVERED):
                delivery.picked_up_at = delivery.accepted_at + timedelta(minutes=self.rng.randint(5, 40))
            if status == DeliveryStatus.DELIVERED:
                delivery.delivered_at = delivery.picked_up_at + timedelta(minutes=self.rng.randint(10, 90))
                delivery.delivered_by = courier
            delivery.save()
            deliveries.append(delivery)
        return deliveries

    # ============================================
    # Courier locations
    # ============================================

    def jitter(self, amount):
        return (self.rng.random() - 0.5) * 2 * amount

    def ensure_locations(self, couriers, deliveries, history_pings, step) -> int:
        """Create missing current-position slots, near an active job when there is one."""
        active = {}
        for d in deliveries:
            if d.status in (DeliveryStatus.ACCEPTED, DeliveryStatus.PICKED_UP):
                active.setdefault(d.assigned_to_id, []).append(d)

        created_count = 0
        for courier in couriers:
            jobs = active.get(courier.pk)
            if jobs:
                d = self.rng.choice(jobs)
                lat = d.business_latitude + 0.8 * (d.destination_latitude - d.business_latitude) + self.jitter(0.003)
                lng = d.business_longitude + 0.8 * (d.destination_longitude - d.business_longitude) + self.jitter(0.003)
            else:
                _, _, city_lat, city_lng = self.rng.choice(CITIES)
                lat, lng = city_lat + self.jitter(0.005), city_lng + self.jitter(0.005)

            _, created = CourierLocation.objects.get_or_create(
                courier=courier,
                defaults={'latitude': lat, 'longitude': lng, 'updated_at': self.now},
            )
            if created:
                created_count += 1

            for i in range(history_pings - 1, -1, -1):
                recorded_at = self.now - i * step
                CourierLocationPing.objects.get_or_create(
                    courier=courier,
                    recorded_at=recorded_at,
                    defaults={
                        'latitude': lat + self.jitter(0.002),
                        'longitude': lng + self.jitter(0.002),
                    },
                )
        return created_count
