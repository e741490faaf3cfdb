"""
Core Tests
==========

Tests for:
1. Custom User model and manager
2. Onboarding (one-time role selection, administrative role change)
3. Account API (register, me, role selection, admin listings)
4. Health probes
5. Maintenance commands (init_admin, seed_demo)
"""

from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.db.models import Sum
from django.test import TestCase, override_settings
from django.utils import timezone
from datetime import timedelta
from rest_framework import status
from rest_framework.test import APIClient

from core.models import BusinessProfile, CourierProfile, User, UserRole
from core.onboarding import (
    AccountState,
    RoleAlreadySelected,
    RoleNotSelectable,
    account_state,
    change_role,
    select_role,
)
from logistics.models import CourierLocation, CourierLocationPing, Delivery, DeliveryStatus

PASSWORD = 'Str0ng-pass!word'


def make_business(email='shop@example.com', lat=32.0853, lng=34.7818, name='Tel Aviv Bakery'):
    user = User.objects.create_user(email=email, password=PASSWORD)
    return select_role(user, UserRole.BUSINESS, {
        'business_name': name,
        'business_address': 'Tel Aviv, Israel',
        'latitude': lat,
        'longitude': lng,
    })


def make_courier(email='rider@example.com', name='Dana Levi'):
    user = User.objects.create_user(email=email, password=PASSWORD)
    return select_role(user, UserRole.COURIER, {'courier_name': name})


def make_admin(email='admin@example.com'):
    return User.objects.create_superuser(email=email, password=PASSWORD)


class TestUserModel(TestCase):
    """Tests for the custom User model."""

    def test_new_user_has_no_role(self):
        user = User.objects.create_user(email='New@Example.com', password=PASSWORD)

        self.assertIsNone(user.role)
        self.assertEqual(user.email, 'New@example.com')
        self.assertTrue(user.check_password(PASSWORD))
        self.assertIsNone(user.profile)

    def test_email_is_required(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email='', password=PASSWORD)

    def test_superuser_is_admin(self):
        admin = make_admin()
        self.assertTrue(admin.is_admin)
        self.assertTrue(admin.is_staff)
        self.assertIsNotNone(admin.role_assigned_at)

    def test_name_uses_role_profile(self):
        business = make_business(name='Haifa Florist')
        courier = make_courier(name='Omer Katz')

        self.assertEqual(User.objects.get(pk=business.pk).name, 'Haifa Florist')
        self.assertEqual(User.objects.get(pk=courier.pk).name, 'Omer Katz')


class TestOnboarding(TestCase):
    """Role is picked exactly once."""

    def test_account_states(self):
        user = User.objects.create_user(email='a@example.com', password=PASSWORD)

        self.assertEqual(account_state(None), AccountState.UNAUTHENTICATED)
        self.assertEqual(account_state(user), AccountState.ROLE_PENDING)

        select_role(user, UserRole.COURIER, {'courier_name': 'A'})
        user.refresh_from_db()
        self.assertEqual(account_state(user), AccountState.ROLE_KNOWN)

    def test_business_selection_creates_profile(self):
        business = make_business()

        profile = BusinessProfile.objects.get(user=business)
        self.assertEqual(profile.location, (32.0853, 34.7818))
        self.assertFalse(CourierProfile.objects.filter(user=business).exists())

    def test_courier_starts_with_zero_balance(self):
        courier = make_courier()
        self.assertEqual(CourierProfile.objects.get(user=courier).balance, Decimal('0.00'))

    def test_second_selection_is_rejected(self):
        courier = make_courier()

        with self.assertRaises(RoleAlreadySelected):
            select_role(courier, UserRole.BUSINESS, {'business_name': 'X', 'latitude': 1, 'longitude': 1})

        courier.refresh_from_db()
        self.assertEqual(courier.role, UserRole.COURIER)
        self.assertFalse(BusinessProfile.objects.filter(user=courier).exists())

    def test_admin_cannot_be_self_selected(self):
        user = User.objects.create_user(email='b@example.com', password=PASSWORD)
        with self.assertRaises(RoleNotSelectable):
            select_role(user, UserRole.ADMIN)

    def test_change_role_swaps_profile(self):
        courier = make_courier()

        change_role(courier, UserRole.ADMIN)

        courier.refresh_from_db()
        self.assertEqual(courier.role, UserRole.ADMIN)
        self.assertTrue(courier.is_staff)
        self.assertFalse(CourierProfile.objects.filter(user=courier).exists())

    def test_change_role_to_none_returns_to_pending(self):
        admin = make_admin()

        change_role(admin, None)

        admin.refresh_from_db()
        self.assertIsNone(admin.role)
        self.assertIsNone(admin.role_assigned_at)
        self.assertFalse(admin.is_staff)


class TestAccountAPI(TestCase):
    """Registration, me, role selection and admin listings."""

    def setUp(self):
        self.client = APIClient()

    def test_register_leaves_role_pending(self):
        response = self.client.post('/api/users/', {
            'email': 'fresh@example.com',
            'password': PASSWORD,
            'display_name': 'Fresh',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIsNone(User.objects.get(email='fresh@example.com').role)

    def test_token_login(self):
        User.objects.create_user(email='login@example.com', password=PASSWORD)

        response = self.client.post('/api/auth/token/', {
            'email': 'login@example.com', 'password': PASSWORD
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)

    def test_me_requires_authentication(self):
        response = self.client.get('/api/users/me/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_reports_pending_state(self):
        user = User.objects.create_user(email='p@example.com', password=PASSWORD)
        self.client.force_authenticate(user)

        response = self.client.get('/api/users/me/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['state'], 'role_pending')
        self.assertIsNone(response.data['profile'])

    def test_select_courier_role(self):
        user = User.objects.create_user(email='c@example.com', password=PASSWORD)
        self.client.force_authenticate(user)

        response = self.client.post('/api/users/me/role/', {
            'role': 'courier', 'courier_name': 'Noa Cohen'
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['role'], 'courier')
        self.assertEqual(response.data['state'], 'role_known')
        self.assertEqual(response.data['profile']['courier_name'], 'Noa Cohen')

    def test_select_role_twice_conflicts(self):
        courier = make_courier()
        self.client.force_authenticate(courier)

        response = self.client.post('/api/users/me/role/', {
            'role': 'courier', 'courier_name': 'Again'
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'role_already_selected')

    def test_business_role_needs_resolved_address(self):
        user = User.objects.create_user(email='b@example.com', password=PASSWORD)
        self.client.force_authenticate(user)

        response = self.client.post('/api/users/me/role/', {
            'role': 'business', 'business_name': 'Shop', 'business_address': 'somewhere'
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('business_address', response.data)
        user.refresh_from_db()
        self.assertIsNone(user.role)

    def test_admin_role_not_offered(self):
        user = User.objects.create_user(email='x@example.com', password=PASSWORD)
        self.client.force_authenticate(user)

        response = self.client.post('/api/users/me/role/', {'role': 'admin'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_patch_me_updates_profile_but_not_balance(self):
        courier = make_courier()
        self.client.force_authenticate(courier)

        response = self.client.patch('/api/users/me/', {
            'display_name': 'Dana',
            'courier_name': 'Dana L.',
            'balance': '999.00',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        profile = CourierProfile.objects.get(user=courier)
        self.assertEqual(profile.courier_name, 'Dana L.')
        self.assertEqual(profile.balance, Decimal('0.00'))

    def test_patch_me_rejected_profile_leaves_account_untouched(self):
        business = make_business()
        self.client.force_authenticate(business)

        response = self.client.patch('/api/users/me/', {
            'display_name': 'Renamed',
            'latitude': 123,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        business.refresh_from_db()
        self.assertNotEqual(business.display_name, 'Renamed')
        self.assertEqual(BusinessProfile.objects.get(user=business).latitude, 32.0853)

    def test_patch_me_cannot_change_role(self):
        courier = make_courier()
        self.client.force_authenticate(courier)

        self.client.patch('/api/users/me/', {'role': 'admin'}, format='json')

        courier.refresh_from_db()
        self.assertEqual(courier.role, UserRole.COURIER)

    def test_couriers_listing_is_admin_only(self):
        courier = make_courier()
        self.client.force_authenticate(courier)
        self.assertEqual(self.client.get('/api/users/couriers/').status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(make_admin())
        response = self.client.get('/api/users/couriers/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        row = response.data['results'][0]
        self.assertEqual(row['courier_name'], 'Dana Levi')
        self.assertEqual(row['active_deliveries'], 0)

    def test_businesses_listing(self):
        make_business()
        self.client.force_authenticate(make_admin())

        response = self.client.get('/api/users/businesses/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['results'][0]['business']['business_name'], 'Tel Aviv Bakery')


class TestHealthProbes(TestCase):

    def test_liveness(self):
        response = self.client.get('/health/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'ok')

    def test_readiness(self):
        response = self.client.get('/health/ready/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['checks']['database']['status'], 'healthy')
        self.assertEqual(response.json()['checks']['channel_layer']['status'], 'healthy')

    def test_liveness_reports_dispatch_counters(self):
        response = self.client.get('/health/')
        self.assertEqual(response.json()['dispatch'], {'posted': 0, 'in_progress': 0, 'couriers_online': 0})

    def test_readiness_fails_without_channel_layer(self):
        with patch('core.health.get_channel_layer', return_value=None):
            response = self.client.get('/health/ready/')

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()['checks']['channel_layer']['status'], 'unhealthy')


class TestInitAdminCommand(TestCase):
    """init_admin keeps exactly one admin."""

    def run_command(self, **options):
        out = StringIO()
        call_command('init_admin', stdout=out, **options)
        return out.getvalue()

    def test_creates_admin_when_none_exists(self):
        output = self.run_command(email='boss@example.com', password='An0ther-secret', name='Boss')

        admin = User.objects.get(email='boss@example.com')
        self.assertEqual(admin.role, UserRole.ADMIN)
        self.assertTrue(admin.is_staff)
        self.assertTrue(admin.check_password('An0ther-secret'))
        self.assertIn('Primary admin ready', output)

    def test_promotes_existing_account(self):
        courier = make_courier(email='boss@example.com')

        self.run_command(email='boss@example.com', password='An0ther-secret', name='Boss')

        courier.refresh_from_db()
        self.assertEqual(courier.role, UserRole.ADMIN)
        self.assertFalse(CourierProfile.objects.filter(user=courier).exists())

    def test_keeps_oldest_admin_and_demotes_others(self):
        now = timezone.now()
        first = make_admin('first@example.com')
        second = make_admin('second@example.com')
        User.objects.filter(pk=first.pk).update(date_joined=now - timedelta(days=10))
        User.objects.filter(pk=second.pk).update(date_joined=now - timedelta(days=1))
        holder = make_courier(email='boss@example.com')

        self.run_command(email='boss@example.com', password='An0ther-secret', name='Boss')

        first.refresh_from_db()
        second.refresh_from_db()
        holder.refresh_from_db()
        self.assertEqual(first.email, 'boss@example.com')
        self.assertEqual(first.role, UserRole.ADMIN)
        self.assertTrue(first.check_password('An0ther-secret'))
        self.assertIsNone(second.role)
        self.assertTrue(holder.email.startswith('boss+replaced_'))
        self.assertTrue(holder.email.endswith('@example.com'))
        self.assertEqual(User.objects.filter(role=UserRole.ADMIN).count(), 1)

    def test_is_idempotent(self):
        self.run_command(email='boss@example.com', password='An0ther-secret', name='Boss')
        self.run_command(email='boss@example.com', password='An0ther-secret', name='Boss')

        self.assertEqual(User.objects.filter(role=UserRole.ADMIN).count(), 1)
        self.assertEqual(User.objects.count(), 1)

    @override_settings(ADMIN_PASSWORD='')
    def test_password_is_required(self):
        with self.assertRaises(CommandError):
            self.run_command(email='boss@example.com', password='')


class TestSeedDemoCommand(TestCase):
    """seed_demo only ever inserts."""

    def run_seed(self, **options):
        call_command('seed_demo', stdout=StringIO(), seed=7, **options)

    def test_seeds_accounts_deliveries_and_locations(self):
        self.run_seed(couriers=3, businesses=2, history_pings=2)

        self.assertEqual(User.objects.filter(role=UserRole.COURIER).count(), 3)
        self.assertEqual(User.objects.filter(role=UserRole.BUSINESS).count(), 2)
        for business in User.objects.filter(role=UserRole.BUSINESS):
            self.assertTrue(10 <= Delivery.objects.filter(business=business).count() <= 14)

        self.assertEqual(CourierLocation.objects.count(), 3)
        self.assertEqual(CourierLocationPing.objects.count(), 6)

    def test_seeded_deliveries_respect_lifecycle(self):
        self.run_seed(couriers=3, businesses=2)

        for delivery in Delivery.objects.all():
            delivery.full_clean()
            self.assertGreaterEqual(delivery.payment, Decimal('15.00'))
            if delivery.status == DeliveryStatus.POSTED:
                self.assertIsNone(delivery.accepted_at)

    def test_courier_balance_matches_delivered_payments(self):
        self.run_seed(couriers=3, businesses=2)

        for courier in User.objects.filter(role=UserRole.COURIER):
            earned = Delivery.objects.filter(
                delivered_by=courier, status=DeliveryStatus.DELIVERED
            ).aggregate(total=Sum('payment'))['total'] or Decimal('0.00')
            self.assertEqual(courier.courier_profile.balance, earned)

    def test_rerun_does_not_touch_existing_accounts(self):
        self.run_seed(couriers=2, businesses=1)
        courier = User.objects.get(email='courier01@example.com')
        CourierProfile.objects.filter(user=courier).update(balance=Decimal('1.23'))
        deliveries = Delivery.objects.count()

        self.run_seed(couriers=2, businesses=1)

        self.assertEqual(User.objects.count(), 3)
        self.assertEqual(Delivery.objects.count(), deliveries)
        self.assertEqual(CourierProfile.objects.get(user=courier).balance, Decimal('1.23'))
