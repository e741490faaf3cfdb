"""
WebSocket consumer tests.

Channel-layer traffic is sent straight to the in-memory layer; the
lifecycle's own broadcasts fire synchronously in setUp before any
socket is listening.
"""

from asgiref.sync import async_to_sync
from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.conf import settings
from django.core.cache import cache
from django.test import SimpleTestCase, TransactionTestCase
from rest_framework_simplejwt.tokens import RefreshToken

from core.middleware import JWTAuthMiddlewareStack
from core.models import UserRole
from logistics import events
from logistics.consumers import (
    CLOSE_FORBIDDEN,
    CLOSE_NOT_FOUND,
    CLOSE_UNAUTHENTICATED,
    delivery_message,
)
from logistics.models import CourierLocation
from logistics.routing import websocket_urlpatterns
from logistics.services import lifecycle
from logistics.services.tracking import update_courier_location
from logistics.tests.helpers import (
    HAIFA,
    TEL_AVIV,
    make_admin,
    make_business,
    make_courier,
    north_of,
    post_delivery,
)

application = URLRouter(websocket_urlpatterns)


def snapshot_of(delivery):
    return events.delivery_snapshot(delivery)


class TestDeliveryMessage(SimpleTestCase):
    """Per-viewer shaping of a broadcast snapshot."""

    class Viewer:
        def __init__(self, pk, role):
            self.pk = pk
            self.role = role

    def snapshot(self, status='posted', assigned_to=None):
        return {'id': 'd-1', 'status': status, 'assigned_to': assigned_to}

    def test_open_candidate_for_courier(self):
        message = delivery_message(self.Viewer('c-1', UserRole.COURIER), self.snapshot())
        self.assertEqual(message['type'], 'delivery')
        self.assertEqual(message['actions'], ['accept'])

    def test_claimed_by_other_is_withdrawn(self):
        message = delivery_message(
            self.Viewer('c-1', UserRole.COURIER), self.snapshot('accepted', 'c-2')
        )
        self.assertEqual(message, {'type': 'delivery_withdrawn', 'delivery_id': 'd-1'})

    def test_own_job_keeps_actions(self):
        message = delivery_message(
            self.Viewer('c-1', UserRole.COURIER), self.snapshot('accepted', 'c-1')
        )
        self.assertEqual(message['actions'], ['picked_up'])

    def test_business_gets_plain_snapshot(self):
        message = delivery_message(
            self.Viewer('b-1', UserRole.BUSINESS), self.snapshot('accepted', 'c-2')
        )
        self.assertEqual(message['type'], 'delivery')
        self.assertEqual(message['actions'], [])


class ConsumerTestBase(TransactionTestCase):

    def setUp(self):
        cache.clear()
        async_to_sync(get_channel_layer().flush)()
        self.shop = make_business()
        self.courier = make_courier(location=TEL_AVIV)
        self.admin = make_admin()

    def communicator(self, path, user=None):
        communicator = WebsocketCommunicator(application, path)
        if user is not None:
            communicator.scope['user'] = user
        return communicator

    async def connected(self, path, user):
        communicator = self.communicator(path, user)
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        return communicator


class TestConnectionChecks(ConsumerTestBase):

    async def test_anonymous_is_closed(self):
        communicator = self.communicator('/ws/courier/')
        connected, code = await communicator.connect()
        self.assertFalse(connected)
        self.assertEqual(code, CLOSE_UNAUTHENTICATED)

    async def test_wrong_role_is_closed(self):
        for path, user in (('/ws/courier/', self.shop), ('/ws/business/', self.courier), ('/ws/dispatch/', self.shop)):
            communicator = self.communicator(path, user)
            connected, code = await communicator.connect()
            self.assertFalse(connected)
            self.assertEqual(code, CLOSE_FORBIDDEN)

    async def test_ping(self):
        communicator = await self.connected('/ws/business/', self.shop)
        self.assertEqual(await communicator.receive_json_from(), {'type': 'connection_established'})

        await communicator.send_json_to({'type': 'ping'})
        self.assertEqual(await communicator.receive_json_from(), {'type': 'pong'})
        await communicator.disconnect()


class TestDeliveryTrackingConsumer(ConsumerTestBase):

    def setUp(self):
        super().setUp()
        self.delivery = post_delivery(self.shop)
        lifecycle.accept_delivery(self.delivery.pk, self.courier)
        self.path = f'/ws/deliveries/{self.delivery.pk}/'

    async def test_owner_gets_snapshot_and_courier_position(self):
        communicator = await self.connected(self.path, self.shop)

        first = await communicator.receive_json_from()
        self.assertEqual(first['type'], 'delivery')
        self.assertEqual(first['delivery']['status'], 'accepted')

        second = await communicator.receive_json_from()
        self.assertEqual(second['type'], 'courier_location')
        self.assertEqual(second['location']['courier_id'], str(self.courier.pk))
        await communicator.disconnect()

    async def test_foreign_business_is_closed(self):
        other = await database_sync_to_async(make_business)('other@example.com', HAIFA, 'Other')
        communicator = self.communicator(self.path, other)
        connected, code = await communicator.connect()
        self.assertFalse(connected)
        self.assertEqual(code, CLOSE_FORBIDDEN)

    async def test_unknown_delivery_is_closed(self):
        communicator = self.communicator('/ws/deliveries/00000000-0000-0000-0000-000000000000/', self.admin)
        connected, code = await communicator.connect()
        self.assertFalse(connected)
        self.assertEqual(code, CLOSE_NOT_FOUND)

    async def test_live_change_is_pushed(self):
        communicator = await self.connected(self.path, self.shop)
        await communicator.receive_json_from()
        await communicator.receive_json_from()

        snapshot = await database_sync_to_async(snapshot_of)(self.delivery)
        snapshot['status'] = 'picked_up'
        await get_channel_layer().group_send(
            events.delivery_group(self.delivery.pk),
            {'type': 'delivery_snapshot', 'delivery': snapshot, 'created': False},
        )

        message = await communicator.receive_json_from()
        self.assertEqual(message['delivery']['status'], 'picked_up')
        await communicator.disconnect()


class TestTrackingSubscriptionForCouriers(ConsumerTestBase):
    """A courier watching an open candidate must not follow whoever claims it."""

    def setUp(self):
        super().setUp()
        self.rival = make_courier(email='rival@example.com', name='Rival', location=HAIFA)
        self.delivery = post_delivery(self.shop)
        self.path = f'/ws/deliveries/{self.delivery.pk}/'

    async def test_claim_by_other_courier_ends_the_subscription(self):
        communicator = await self.connected(self.path, self.rival)
        first = await communicator.receive_json_from()
        self.assertEqual(first['actions'], ['accept'])

        await database_sync_to_async(lifecycle.accept_delivery)(self.delivery.pk, self.courier)

        withdrawn = await communicator.receive_json_from()
        self.assertEqual(withdrawn, {'type': 'delivery_withdrawn', 'delivery_id': str(self.delivery.pk)})
        closed = await communicator.receive_output()
        self.assertEqual(closed['type'], 'websocket.close')
        self.assertEqual(closed['code'], CLOSE_FORBIDDEN)

        # The winner keeps moving; none of it reaches the rival
        await database_sync_to_async(update_courier_location)(self.courier, 32.1, 34.8)
        self.assertTrue(await communicator.receive_nothing())

    async def test_foreign_courier_position_is_not_forwarded(self):
        communicator = await self.connected(self.path, self.rival)
        await communicator.receive_json_from()

        location = {'courier_id': str(self.courier.pk), 'latitude': 32.1, 'longitude': 34.8, 'updated_at': None}
        await get_channel_layer().group_send(
            events.delivery_group(self.delivery.pk),
            {'type': 'courier_location', 'location': location},
        )

        self.assertTrue(await communicator.receive_nothing())
        await communicator.disconnect()

    async def test_assigned_courier_sees_own_position(self):
        await database_sync_to_async(lifecycle.accept_delivery)(self.delivery.pk, self.courier)
        communicator = await self.connected(self.path, self.courier)
        snapshot = await communicator.receive_json_from()
        self.assertEqual(snapshot['actions'], ['picked_up'])
        await communicator.receive_json_from()

        await database_sync_to_async(update_courier_location)(self.courier, 32.1, 34.8)

        message = await communicator.receive_json_from()
        self.assertEqual(message['type'], 'courier_location')
        self.assertEqual(message['location']['latitude'], 32.1)
        await communicator.disconnect()


class TestCourierConsumer(ConsumerTestBase):

    def setUp(self):
        super().setUp()
        self.near = post_delivery(self.shop)
        self.far = post_delivery(make_business(email='far@example.com', location=HAIFA, name='Far'))

    async def open_feed(self):
        communicator = await self.connected('/ws/courier/', self.courier)
        hello = await communicator.receive_json_from()
        self.assertEqual(hello['type'], 'connection_established')
        return communicator, hello

    async def push(self, delivery, **overrides):
        snapshot = await database_sync_to_async(snapshot_of)(delivery)
        snapshot.update(overrides)
        await get_channel_layer().group_send(
            events.COURIERS_GROUP,
            {'type': 'delivery_snapshot', 'delivery': snapshot, 'created': False},
        )

    async def test_area_comes_from_location_slot(self):
        communicator, hello = await self.open_feed()
        self.assertEqual(hello['area']['latitude'], TEL_AVIV[0])
        self.assertEqual(hello['area']['radius_km'], 5.0)
        await communicator.disconnect()

    async def test_feed_subscribes_to_the_shared_courier_group_only(self):
        communicator, _ = await self.open_feed()

        subscribed = {name for name, channels in get_channel_layer().groups.items() if channels}
        self.assertEqual(subscribed, {events.COURIERS_GROUP})
        await communicator.disconnect()

    async def test_candidate_inside_radius_is_forwarded(self):
        communicator, _ = await self.open_feed()

        await self.push(self.far)
        await self.push(self.near)

        message = await communicator.receive_json_from()
        self.assertEqual(message['delivery']['id'], str(self.near.pk))
        self.assertEqual(message['actions'], ['accept'])
        self.assertTrue(await communicator.receive_nothing())
        await communicator.disconnect()

    async def test_claimed_candidate_is_withdrawn(self):
        communicator, _ = await self.open_feed()

        await self.push(self.near, status='accepted', assigned_to='11111111-1111-1111-1111-111111111111')

        message = await communicator.receive_json_from()
        self.assertEqual(message, {'type': 'delivery_withdrawn', 'delivery_id': str(self.near.pk)})
        await communicator.disconnect()

    async def test_set_area_widens_radius(self):
        communicator, _ = await self.open_feed()

        await communicator.send_json_to({'type': 'set_area', 'radius_km': 100})
        area = await communicator.receive_json_from()
        self.assertEqual(area['area']['radius_km'], 100.0)

        await self.push(self.far)
        message = await communicator.receive_json_from()
        self.assertEqual(message['delivery']['id'], str(self.far.pk))
        await communicator.disconnect()

    async def test_set_area_by_zoom_and_invalid(self):
        communicator, _ = await self.open_feed()

        await communicator.send_json_to({'type': 'set_area', 'zoom': 15})
        self.assertEqual((await communicator.receive_json_from())['area']['radius_km'], 1.2)

        await communicator.send_json_to({'type': 'set_area'})
        self.assertEqual((await communicator.receive_json_from())['type'], 'error')
        await communicator.disconnect()

    async def test_set_area_radius_is_clamped_and_checked(self):
        communicator, _ = await self.open_feed()

        await communicator.send_json_to({'type': 'set_area', 'radius_km': 5000})
        area = await communicator.receive_json_from()
        self.assertEqual(area['area']['radius_km'], settings.COURIER_MAX_RADIUS_KM)

        await communicator.send_json_to({'type': 'set_area', 'radius_km': -3})
        self.assertEqual((await communicator.receive_json_from())['area']['radius_km'], 0.0)

        for bad in (True, float('inf'), '10'):
            await communicator.send_json_to({'type': 'set_area', 'radius_km': bad})
            self.assertEqual((await communicator.receive_json_from())['type'], 'error')
        await communicator.disconnect()

    async def test_location_update_moves_slot_and_area(self):
        communicator, _ = await self.open_feed()
        target = north_of(TEL_AVIV, 20)

        await communicator.send_json_to({'type': 'location_update', 'latitude': target[0], 'longitude': target[1]})
        confirmed = await communicator.receive_json_from()
        self.assertEqual(confirmed['type'], 'location_confirmed')

        slot = await database_sync_to_async(CourierLocation.objects.get)(courier=self.courier)
        self.assertAlmostEqual(slot.latitude, target[0])

        # The old neighbourhood is now out of range
        await self.push(self.near)
        self.assertTrue(await communicator.receive_nothing())
        await communicator.disconnect()

    async def test_invalid_location_update(self):
        communicator, _ = await self.open_feed()

        await communicator.send_json_to({'type': 'location_update', 'latitude': 'north', 'longitude': 0})
        self.assertEqual((await communicator.receive_json_from())['type'], 'error')
        await communicator.disconnect()


class TestCourierLocationConsumer(ConsumerTestBase):

    async def test_admin_receives_current_position(self):
        communicator = await self.connected(f'/ws/couriers/{self.courier.pk}/location/', self.admin)

        message = await communicator.receive_json_from()
        self.assertEqual(message['type'], 'courier_location')
        self.assertEqual(message['location']['latitude'], TEL_AVIV[0])
        await communicator.disconnect()

    async def test_unrelated_business_is_closed(self):
        communicator = self.communicator(f'/ws/couriers/{self.courier.pk}/location/', self.shop)
        connected, code = await communicator.connect()
        self.assertFalse(connected)
        self.assertEqual(code, CLOSE_FORBIDDEN)


class TestDispatchConsumer(ConsumerTestBase):

    def setUp(self):
        super().setUp()
        self.open_delivery = post_delivery(self.shop)
        done = post_delivery(self.shop)
        lifecycle.accept_delivery(done.pk, self.courier)
        lifecycle.advance_delivery(done.pk, self.courier, 'picked_up')
        lifecycle.advance_delivery(done.pk, self.courier, 'delivered')

    async def test_initial_state_lists_open_deliveries_and_couriers(self):
        communicator = await self.connected('/ws/dispatch/', self.admin)

        state = await communicator.receive_json_from()
        self.assertEqual(state['type'], 'dispatch_state')
        self.assertEqual([d['id'] for d in state['deliveries']], [str(self.open_delivery.pk)])
        self.assertEqual([c['courier_id'] for c in state['couriers']], [str(self.courier.pk)])

        await communicator.send_json_to({'type': 'refresh'})
        self.assertEqual((await communicator.receive_json_from())['type'], 'dispatch_state')
        await communicator.disconnect()


class TestJWTQueryStringAuth(ConsumerTestBase):

    def stack(self):
        return JWTAuthMiddlewareStack(URLRouter(websocket_urlpatterns))

    async def test_valid_token(self):
        token = await database_sync_to_async(lambda: str(RefreshToken.for_user(self.shop).access_token))()
        communicator = WebsocketCommunicator(self.stack(), f'/ws/business/?token={token}')

        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        await communicator.disconnect()

    async def test_bad_token(self):
        communicator = WebsocketCommunicator(self.stack(), '/ws/business/?token=garbage')

        connected, code = await communicator.connect()
        self.assertFalse(connected)
        self.assertEqual(code, CLOSE_UNAUTHENTICATED)
