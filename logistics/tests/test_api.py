"""
Delivery and courier location API tests.
"""

from decimal import Decimal
from unittest.mock import patch

from django.core.cache import cache
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APIClient

from core.models import User
from logistics.models import CourierLocationPing, Delivery, DeliveryStatus
from logistics.services import lifecycle
from logistics.tests.helpers import (
    HAIFA,
    JERUSALEM,
    PASSWORD,
    TEL_AVIV,
    balance_of,
    make_admin,
    make_business,
    make_courier,
    north_of,
    post_delivery,
    tuesday_at,
)

DELIVERIES_URL = '/api/deliveries/'


def detail_url(delivery):
    return f'{DELIVERIES_URL}{delivery.pk}/'


def result_ids(response):
    return {row['id'] for row in response.data['results']}


class APITestBase(TestCase):

    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.shop = make_business()
        self.courier = make_courier(location=TEL_AVIV)
        self.admin = make_admin()

    def login(self, user):
        self.client.force_authenticate(user=user)


class TestCreateDeliveryAPI(APITestBase):

    payload = {
        'item': 'Birthday cake',
        'destination_address': 'Herzl 10, Haifa',
        'destination_latitude': HAIFA[0],
        'destination_longitude': HAIFA[1],
        'destination_place_id': 'place-123',
    }

    def test_business_creates_delivery(self):
        self.login(self.shop)
        response = self.client.post(DELIVERIES_URL, self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'posted')
        self.assertEqual(response.data['business_name'], 'Tel Aviv Bakery')
        self.assertEqual(response.data['business_location']['latitude'], TEL_AVIV[0])
        self.assertIsNone(response.data['assigned_to'])
        self.assertEqual(response.data['actions'], [])
        self.assertGreater(Decimal(response.data['payment']), 0)

    def test_client_cannot_set_payment_or_status(self):
        self.login(self.shop)
        payload = dict(self.payload, payment='1.00', status='delivered', distance_km=1)
        response = self.client.post(DELIVERIES_URL, payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        delivery = Delivery.objects.get(pk=response.data['id'])
        self.assertEqual(delivery.status, DeliveryStatus.POSTED)
        self.assertNotEqual(delivery.payment, Decimal('1.00'))

    def test_missing_fields(self):
        self.login(self.shop)
        response = self.client.post(DELIVERIES_URL, {'item': ' '}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        for field in ('item', 'destination_address', 'destination_latitude'):
            self.assertIn(field, response.data)

    def test_courier_cannot_create(self):
        self.login(self.courier)
        response = self.client.post(DELIVERIES_URL, self.payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(Delivery.objects.exists())

    def test_anonymous_is_rejected(self):
        response = self.client.post(DELIVERIES_URL, self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_pending_user_is_rejected(self):
        self.login(User.objects.create_user(email='pending@example.com', password=PASSWORD))
        self.assertEqual(self.client.get(DELIVERIES_URL).status_code, status.HTTP_403_FORBIDDEN)

    def test_quote_matches_created_payment_inputs(self):
        self.login(self.shop)
        response = self.client.post(f'{DELIVERIES_URL}quote/', {
            'destination_latitude': JERUSALEM[0],
            'destination_longitude': JERUSALEM[1],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertAlmostEqual(response.data['distance_km'], 54, delta=3)
        self.assertIn('payment', response.data)
        self.assertIn('multiplier', response.data)

    def test_quote_is_business_only(self):
        self.login(self.courier)
        response = self.client.post(f'{DELIVERIES_URL}quote/', {
            'destination_latitude': HAIFA[0],
            'destination_longitude': HAIFA[1],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class TestDeliveryListAPI(APITestBase):

    def setUp(self):
        super().setUp()
        self.near_shop = make_business(email='near@example.com', location=north_of(TEL_AVIV, 2), name='Corner Deli')
        self.far_shop = make_business(email='far@example.com', location=HAIFA, name='Haifa Florist')
        self.own_delivery = post_delivery(self.shop)
        self.near = post_delivery(self.near_shop)
        self.far = post_delivery(self.far_shop)

    def test_business_list_is_scoped(self):
        self.login(self.shop)
        response = self.client.get(DELIVERIES_URL)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(result_ids(response), {str(self.own_delivery.pk)})

    def test_courier_feed_uses_slot(self):
        self.login(self.courier)
        response = self.client.get(DELIVERIES_URL)

        self.assertEqual(result_ids(response), {str(self.own_delivery.pk), str(self.near.pk)})
        for row in response.data['results']:
            self.assertEqual(row['actions'], ['accept'])

    def test_courier_feed_explicit_center_and_radius(self):
        self.login(self.courier)
        response = self.client.get(DELIVERIES_URL, {'lat': HAIFA[0], 'lng': HAIFA[1], 'r': 3})

        self.assertEqual(result_ids(response), {str(self.far.pk)})

    def test_courier_feed_zoom(self):
        self.login(self.courier)
        # Zoom 15 is a 1.2 km radius; the deli is 2 km away
        response = self.client.get(DELIVERIES_URL, {'zoom': 15})
        self.assertEqual(result_ids(response), {str(self.own_delivery.pk)})

    def test_lat_without_lng_is_rejected(self):
        self.login(self.courier)
        response = self.client.get(DELIVERIES_URL, {'lat': TEL_AVIV[0]})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_negative_radius_is_rejected(self):
        self.login(self.courier)
        response = self.client.get(DELIVERIES_URL, {'r': -1})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_admin_sees_all_with_status_filter(self):
        lifecycle.accept_delivery(self.far.pk, self.courier)
        self.login(self.admin)

        everything = self.client.get(DELIVERIES_URL)
        accepted = self.client.get(DELIVERIES_URL, {'status': 'accepted'})

        self.assertEqual(everything.data['count'], 3)
        self.assertEqual(result_ids(accepted), {str(self.far.pk)})
        self.assertEqual(accepted.data['results'][0]['actions'], [])

    def test_search_filter(self):
        self.login(self.admin)
        response = self.client.get(DELIVERIES_URL, {'business_name': 'florist'})
        self.assertEqual(result_ids(response), {str(self.far.pk)})

    def test_hidden_delivery_is_not_found(self):
        self.login(self.shop)
        response = self.client.get(detail_url(self.far))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_visible_delivery_detail(self):
        self.login(self.courier)
        response = self.client.get(detail_url(self.far))

        # Posted rows are claimable by any courier, even outside the radius
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['id'], str(self.far.pk))


class TestAcceptAndAdvanceAPI(APITestBase):

    def setUp(self):
        super().setUp()
        self.rival = make_courier(email='rival@example.com', name='Rival', location=TEL_AVIV)
        self.delivery = post_delivery(self.shop)

    def accept(self, courier):
        self.login(courier)
        return self.client.post(f'{detail_url(self.delivery)}accept/')

    def advance(self, courier, new_status):
        self.login(courier)
        return self.client.patch(detail_url(self.delivery), {'status': new_status}, format='json')

    def test_accept_then_race_lost(self):
        first = self.accept(self.courier)
        second = self.accept(self.rival)

        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(first.data['status'], 'accepted')
        self.assertEqual(first.data['assigned_to'], str(self.courier.pk))
        self.assertEqual(first.data['actions'], ['picked_up'])
        self.assertEqual(first.data['navigation_target']['kind'], 'pickup')

        self.assertEqual(second.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(second.data['code'], 'race_lost')

    def test_business_cannot_accept(self):
        response = self.accept(self.shop)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_accept_unknown_delivery(self):
        self.login(self.courier)
        response = self.client.post(f'{DELIVERIES_URL}00000000-0000-0000-0000-000000000000/accept/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_full_progress(self):
        self.accept(self.courier)

        picked = self.advance(self.courier, 'picked_up')
        self.assertEqual(picked.status_code, status.HTTP_200_OK)
        self.assertEqual(picked.data['navigation_target']['kind'], 'destination')

        delivered = self.advance(self.courier, 'delivered')
        self.assertEqual(delivered.status_code, status.HTTP_200_OK)
        self.assertEqual(delivered.data['delivered_by'], str(self.courier.pk))
        self.assertIsNone(delivered.data['navigation_target'])
        self.assertEqual(balance_of(self.courier), self.delivery.payment)

    def test_other_courier_is_not_assigned(self):
        self.accept(self.courier)
        response = self.advance(self.rival, 'picked_up')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], 'not_assigned')

    def test_skipping_is_stale_state(self):
        self.accept(self.courier)
        response = self.advance(self.courier, 'delivered')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'stale_state')

    def test_patch_own_job_back_to_accepted_is_stale_state(self):
        self.accept(self.courier)
        self.advance(self.courier, 'picked_up')
        response = self.advance(self.courier, 'accepted')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'stale_state')

    def test_repeat_delivered_is_stale_state(self):
        self.accept(self.courier)
        self.advance(self.courier, 'picked_up')
        self.advance(self.courier, 'delivered')

        response = self.advance(self.courier, 'delivered')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(balance_of(self.courier), self.delivery.payment)

    def test_admin_cannot_change_status(self):
        self.accept(self.courier)
        response = self.advance(self.admin, 'picked_up')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_unknown_status_value(self):
        self.accept(self.courier)
        response = self.advance(self.courier, 'teleported')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_put_is_not_allowed(self):
        self.login(self.courier)
        response = self.client.put(detail_url(self.delivery), {'status': 'accepted'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_405_METHOD_NOT_ALLOWED)


class TestCourierLocationAPI(APITestBase):

    URL = '/api/courier/location/'

    def test_courier_posts_and_reads_location(self):
        self.login(self.courier)
        response = self.client.post(self.URL, {'latitude': HAIFA[0], 'longitude': HAIFA[1]}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['courier_id'], str(self.courier.pk))
        self.assertEqual(response.data['courier_name'], 'Dana Levi')

        current = self.client.get(self.URL)
        self.assertEqual(current.data['latitude'], HAIFA[0])

    def test_invalid_location(self):
        self.login(self.courier)
        response = self.client.post(self.URL, {'latitude': 95, 'longitude': 0}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_business_cannot_post_location(self):
        self.login(self.shop)
        response = self.client.post(self.URL, {'latitude': HAIFA[0], 'longitude': HAIFA[1]}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_no_location_yet(self):
        self.login(make_courier(email='new@example.com', name='New'))
        self.assertEqual(self.client.get(self.URL).status_code, status.HTTP_404_NOT_FOUND)

    def test_admin_map(self):
        make_courier(email='second@example.com', name='Second', location=HAIFA)
        self.login(self.admin)
        response = self.client.get('/api/couriers/locations/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)
        self.assertEqual(self.client.get('/api/couriers/locations/', {'max_age_minutes': 'x'}).status_code, 400)

    def test_admin_map_is_admin_only(self):
        self.login(self.courier)
        self.assertEqual(self.client.get('/api/couriers/locations/').status_code, status.HTTP_403_FORBIDDEN)

    def test_location_history(self):
        for hour in (9, 10):
            CourierLocationPing.objects.create(
                courier=self.courier, latitude=TEL_AVIV[0], longitude=TEL_AVIV[1], recorded_at=tuesday_at(hour)
            )
        self.login(self.admin)
        response = self.client.get(
            f'/api/couriers/{self.courier.pk}/location-history/',
            {'since': tuesday_at(9, 30).isoformat()},
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)


class TestDeliveryCourierLocationAPI(APITestBase):

    def setUp(self):
        super().setUp()
        self.delivery = post_delivery(self.shop)
        self.url = f'{detail_url(self.delivery)}courier-location/'

    def test_not_active_before_accept(self):
        self.login(self.shop)
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'not_active')

    def test_business_tracks_its_courier(self):
        lifecycle.accept_delivery(self.delivery.pk, self.courier)
        self.login(self.shop)
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['courier_id'], str(self.courier.pk))

    def test_other_business_cannot_track(self):
        lifecycle.accept_delivery(self.delivery.pk, self.courier)
        self.login(make_business(email='other@example.com', location=HAIFA, name='Other'))
        self.assertEqual(self.client.get(self.url).status_code, status.HTTP_404_NOT_FOUND)


class TestJWTFlow(TestCase):

    def test_token_then_create(self):
        shop = make_business()
        client = APIClient()
        token = client.post('/api/auth/token/', {'email': shop.email, 'password': PASSWORD}, format='json')
        self.assertEqual(token.status_code, status.HTTP_200_OK)

        client.credentials(HTTP_AUTHORIZATION=f"Bearer {token.data['access']}")
        with patch('logistics.events.broadcast_delivery'):
            with self.captureOnCommitCallbacks(execute=True):
                response = client.post(DELIVERIES_URL, {
                    'item': 'Flowers',
                    'destination_address': 'Jaffa Rd 1, Jerusalem',
                    'destination_latitude': JERUSALEM[0],
                    'destination_longitude': JERUSALEM[1],
                }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
