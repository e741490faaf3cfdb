"""
Courier Client Toolkit Tests
=============================

Tests for:
1. DispatchClient error taxonomy (401/400/403/404/409/5xx, network failures)
2. RequeryGate debounce and movement threshold
3. RequestSequencer ordering
4. DeliveryBoard snapshot replace
5. CourierFeed accept / advance / live messages
6. CourierFeed against the real API, across pages
"""

import json
from datetime import timedelta
from unittest.mock import MagicMock
from urllib.parse import urlsplit

import requests
from django.conf import settings
from django.core.cache import cache
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from courier.client import (
    AuthenticationError,
    BackendError,
    ConflictError,
    DispatchClient,
    NotFoundError,
    PermissionDeniedError,
    RaceLostError,
    StaleStateError,
    ValidationFailed,
)
from courier.feed import (
    RACE_LOST_MESSAGE,
    CourierFeed,
    DeliveryBoard,
    RequeryGate,
    RequestSequencer,
)
from logistics.services import lifecycle
from logistics.tests.helpers import TEL_AVIV, make_business, make_courier, post_delivery

COURIER_ID = '11111111-1111-1111-1111-111111111111'
OTHER_COURIER_ID = '22222222-2222-2222-2222-222222222222'
BUSINESS_ID = '33333333-3333-3333-3333-333333333333'


def fake_response(status_code=200, body=None, text=None):
    response = MagicMock()
    response.status_code = status_code
    response.reason = 'Reason'
    if text is not None:
        response.content = text.encode()
        response.text = text
        response.json.side_effect = ValueError('not json')
    elif body is None:
        response.content = b''
        response.text = ''
        response.json.side_effect = ValueError('empty')
    else:
        raw = json.dumps(body)
        response.content = raw.encode()
        response.text = raw
        response.json.return_value = body
    return response


def snapshot(delivery_id, status='posted', assigned_to=None, business_id=BUSINESS_ID,
             lat=32.0853, lng=34.7818, created_at='2026-01-01T10:00:00Z'):
    return {
        'id': delivery_id,
        'business_id': business_id,
        'status': status,
        'assigned_to': assigned_to,
        'business_location': {'latitude': lat, 'longitude': lng},
        'created_at': created_at,
    }


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestDispatchClient(SimpleTestCase):
    """HTTP status to exception mapping."""

    def setUp(self):
        self.session = MagicMock()
        self.client = DispatchClient('http://api.test/', token='tok', session=self.session)

    def test_bearer_token_is_sent(self):
        self.session.request.return_value = fake_response(200, {'id': 'x'})

        self.client.me()

        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ('GET', 'http://api.test/api/users/me/'))
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer tok')

    def test_missing_token_fails_without_request(self):
        self.client.token = None
        with self.assertRaises(AuthenticationError):
            self.client.me()
        self.session.request.assert_not_called()

    def test_login_stores_access_token(self):
        self.client.token = None
        self.session.request.return_value = fake_response(200, {'access': 'a1', 'refresh': 'r1'})

        self.client.login('c@example.com', 'pw')

        self.assertEqual(self.client.token, 'a1')
        self.assertEqual(self.client.refresh_token, 'r1')
        self.assertNotIn('Authorization', self.session.request.call_args[1]['headers'])

    def test_401_raises_authentication_error(self):
        self.session.request.return_value = fake_response(401, {'detail': 'Token is invalid or expired'})
        with self.assertRaises(AuthenticationError) as ctx:
            self.client.me()
        self.assertEqual(str(ctx.exception), 'Token is invalid or expired')

    def test_400_carries_field_errors(self):
        self.session.request.return_value = fake_response(400, {
            'error': 'invalid delivery',
            'code': 'validation',
            'errors': {'item': 'Item is required.'},
        })
        with self.assertRaises(ValidationFailed) as ctx:
            self.client.create_delivery('', 'Haifa', 32.79, 34.98)
        self.assertEqual(ctx.exception.message, 'invalid delivery')
        self.assertEqual(ctx.exception.field_errors, {'item': 'Item is required.'})

    def test_400_serializer_body_becomes_field_errors(self):
        self.session.request.return_value = fake_response(400, {'destination_latitude': ['This field is required.']})
        with self.assertRaises(ValidationFailed) as ctx:
            self.client.quote(None, 34.9)
        self.assertIn('destination_latitude', ctx.exception.field_errors)

    def test_403_and_404(self):
        self.session.request.return_value = fake_response(403, {'error': 'nope', 'code': 'forbidden'})
        with self.assertRaises(PermissionDeniedError):
            self.client.get_delivery('d1')

        self.session.request.return_value = fake_response(404, {'detail': 'Not found.'})
        with self.assertRaises(NotFoundError):
            self.client.get_delivery('d1')

    def test_409_on_accept_is_race_lost(self):
        self.session.request.return_value = fake_response(409, {'error': 'delivery already taken', 'code': 'race_lost'})
        with self.assertRaises(RaceLostError) as ctx:
            self.client.accept('d1')
        self.assertEqual(str(ctx.exception), 'delivery already taken')

    def test_409_on_status_change_is_stale_state(self):
        self.session.request.return_value = fake_response(409, {'error': 'invalid status change', 'code': 'stale_state'})
        with self.assertRaises(StaleStateError):
            self.client.update_status('d1', 'delivered')

    def test_409_elsewhere_is_plain_conflict(self):
        self.session.request.return_value = fake_response(409, {'error': 'role already set', 'code': 'role_already_selected'})
        with self.assertRaises(ConflictError) as ctx:
            self.client.select_role('courier', courier_name='Dana')
        self.assertNotIsInstance(ctx.exception, (RaceLostError, StaleStateError))

    def test_500_with_text_body_is_backend_error(self):
        self.session.request.return_value = fake_response(502, text='Bad Gateway')
        with self.assertRaises(BackendError) as ctx:
            self.client.me()
        self.assertEqual(str(ctx.exception), 'Bad Gateway')

    def test_timeout_and_connection_errors(self):
        self.session.request.side_effect = requests.Timeout('slow')
        with self.assertRaises(BackendError):
            self.client.me()

        self.session.request.side_effect = requests.ConnectionError('down')
        with self.assertRaises(BackendError):
            self.client.me()

    def test_malformed_success_body(self):
        self.session.request.return_value = fake_response(200, text='<html>')
        with self.assertRaises(BackendError):
            self.client.me()

    def test_list_unwraps_pagination_and_drops_empty_params(self):
        self.session.request.return_value = fake_response(200, {'count': 1, 'results': [{'id': 'd1'}]})

        rows = self.client.list_deliveries(lat=32.0, lng=34.0, radius_km=5)

        self.assertEqual(rows, [{'id': 'd1'}])
        self.assertEqual(self.session.request.call_args[1]['params'], {'lat': 32.0, 'lng': 34.0, 'r': 5})

    def test_list_follows_next_links(self):
        next_url = 'http://api.test/api/deliveries/?lat=32.0&lng=34.0&page=2&r=5'
        self.session.request.side_effect = [
            fake_response(200, {'count': 3, 'next': next_url, 'results': [{'id': 'd1'}, {'id': 'd2'}]}),
            fake_response(200, {'count': 3, 'next': None, 'results': [{'id': 'd3'}]}),
        ]

        rows = self.client.list_deliveries(lat=32.0, lng=34.0, radius_km=5)

        self.assertEqual([r['id'] for r in rows], ['d1', 'd2', 'd3'])
        second_args, second_kwargs = self.session.request.call_args_list[1]
        self.assertEqual(second_args, ('GET', next_url))
        self.assertIsNone(second_kwargs['params'])

    def test_failing_later_page_raises(self):
        self.session.request.side_effect = [
            fake_response(200, {'count': 3, 'next': 'http://api.test/api/deliveries/?page=2', 'results': [{'id': 'd1'}]}),
            fake_response(503, {'detail': 'busy'}),
        ]
        with self.assertRaises(BackendError):
            self.client.list_deliveries()

    def test_no_automatic_retry(self):
        self.session.request.return_value = fake_response(503, {'detail': 'busy'})
        with self.assertRaises(BackendError):
            self.client.accept('d1')
        self.assertEqual(self.session.request.call_count, 1)


class TestRequeryGate(SimpleTestCase):
    """Trailing debounce plus movement threshold."""

    def setUp(self):
        self.clock = FakeClock()
        self.gate = RequeryGate(debounce_seconds=2.0, min_move_km=0.2, clock=self.clock)

    def test_first_position_queries_after_debounce(self):
        self.assertTrue(self.gate.observe(32.0, 34.0, 5.0))
        self.assertIsNone(self.gate.due())

        self.clock.now = 2.0
        self.assertEqual(self.gate.due(), (32.0, 34.0, 5.0))
        self.assertIsNone(self.gate.due())

    def test_jitter_is_ignored(self):
        self.gate.mark_queried(32.0, 34.0, 5.0)

        # About 11 m north
        self.assertFalse(self.gate.observe(32.0001, 34.0, 5.0))
        self.clock.now = 10.0
        self.assertIsNone(self.gate.due())

    def test_real_movement_schedules_query(self):
        self.gate.mark_queried(32.0, 34.0, 5.0)

        # About 1.1 km north
        self.assertTrue(self.gate.observe(32.01, 34.0, 5.0))
        self.clock.now = 2.5
        self.assertEqual(self.gate.due(), (32.01, 34.0, 5.0))

    def test_radius_change_schedules_query(self):
        self.gate.mark_queried(32.0, 34.0, 5.0)
        self.assertTrue(self.gate.observe(32.0, 34.0, 10.0))

    def test_new_ticks_push_the_deadline(self):
        self.gate.observe(32.0, 34.0, 5.0)
        self.clock.now = 1.5
        self.gate.observe(32.02, 34.0, 5.0)

        self.clock.now = 2.5
        self.assertIsNone(self.gate.due())

        self.clock.now = 3.5
        self.assertEqual(self.gate.due(), (32.02, 34.0, 5.0))


class TestRequestSequencer(SimpleTestCase):

    def test_older_response_is_dropped(self):
        seq = RequestSequencer()
        first = seq.begin()
        second = seq.begin()

        self.assertTrue(seq.should_apply(second))
        self.assertFalse(seq.should_apply(first))

    def test_in_order_responses_all_apply(self):
        seq = RequestSequencer()
        first = seq.begin()
        self.assertTrue(seq.should_apply(first))
        second = seq.begin()
        self.assertTrue(seq.should_apply(second))


class TestDeliveryBoard(SimpleTestCase):

    def test_same_snapshot_twice_is_idempotent(self):
        board = DeliveryBoard()
        row = snapshot('d1')

        board.apply(row)
        board.apply(dict(row))

        self.assertEqual(len(board), 1)
        self.assertEqual(board.rows(), [row])

    def test_snapshot_replaces_whole_row(self):
        board = DeliveryBoard()
        board.apply(snapshot('d1'))
        board.apply(snapshot('d1', status='accepted', assigned_to=COURIER_ID))

        self.assertEqual(board.get('d1')['status'], 'accepted')

    def test_rows_newest_first(self):
        board = DeliveryBoard()
        board.replace_all([
            snapshot('old', created_at='2026-01-01T08:00:00Z'),
            snapshot('new', created_at='2026-01-02T08:00:00Z'),
        ])
        self.assertEqual([r['id'] for r in board.rows()], ['new', 'old'])

    def test_business_board_refuses_foreign_rows(self):
        board = DeliveryBoard(business_id=BUSINESS_ID)

        board.replace_all([snapshot('mine'), snapshot('theirs', business_id='someone-else')])
        self.assertFalse(board.apply(snapshot('other', business_id='someone-else')))

        self.assertIn('mine', board)
        self.assertNotIn('theirs', board)
        self.assertNotIn('other', board)


class TestCourierFeed(SimpleTestCase):

    def setUp(self):
        self.client = MagicMock(spec=DispatchClient)
        self.clock = FakeClock()
        self.feed = CourierFeed(
            self.client,
            COURIER_ID,
            radius_km=5.0,
            gate=RequeryGate(debounce_seconds=1.0, clock=self.clock),
        )
        self.feed.position = (32.0853, 34.7818)

    def test_poll_queries_once_gate_is_due(self):
        self.client.list_deliveries.return_value = [snapshot('d1')]

        self.feed.on_position(32.0853, 34.7818)
        self.assertFalse(self.feed.poll())

        self.clock.now = 1.0
        self.assertTrue(self.feed.poll())
        self.client.list_deliveries.assert_called_once_with(lat=32.0853, lng=34.7818, radius_km=5.0)
        self.assertIn('d1', self.feed.board)

    def test_poll_keeps_rows_on_backend_error(self):
        self.feed.board.apply(snapshot('d1'))
        self.client.list_deliveries.side_effect = BackendError('down')

        self.feed.on_position(32.2, 34.8)
        self.clock.now = 5.0
        self.feed.poll()

        self.assertIn('d1', self.feed.board)

    def test_set_zoom_changes_radius(self):
        self.feed.set_zoom(15)
        self.assertEqual(self.feed.radius_km, 1.2)

    def test_accept_success_applies_confirmed_snapshot(self):
        self.feed.board.apply(snapshot('d1'))
        confirmed = snapshot('d1', status='accepted', assigned_to=COURIER_ID)
        self.client.accept.return_value = confirmed

        result = self.feed.accept('d1')

        self.assertTrue(result.ok)
        self.assertEqual(self.feed.board.get('d1')['status'], 'accepted')

    def test_accept_race_lost_is_a_normal_outcome(self):
        self.feed.board.apply(snapshot('d1'))
        self.client.accept.side_effect = RaceLostError('delivery already taken', status_code=409)

        result = self.feed.accept('d1')

        self.assertFalse(result.ok)
        self.assertEqual(result.message, RACE_LOST_MESSAGE)
        self.assertNotIn('d1', self.feed.board)
        self.assertEqual(self.client.accept.call_count, 1)

    def test_accept_does_not_touch_board_before_confirmation(self):
        row = snapshot('d1')
        self.feed.board.apply(row)
        self.client.accept.side_effect = BackendError('timeout')

        result = self.feed.accept('d1')

        self.assertFalse(result.ok)
        self.assertEqual(self.feed.board.get('d1'), row)

    def test_authentication_error_propagates(self):
        self.client.accept.side_effect = AuthenticationError('expired', status_code=401)
        with self.assertRaises(AuthenticationError):
            self.feed.accept('d1')

    def test_stale_state_refreshes_instead_of_retrying(self):
        self.client.update_status.side_effect = StaleStateError('invalid status change', status_code=409)
        self.client.list_deliveries.return_value = []

        result = self.feed.advance('d1', 'picked_up')

        self.assertFalse(result.ok)
        self.assertTrue(result.refreshed)
        self.assertEqual(self.client.update_status.call_count, 1)
        self.client.list_deliveries.assert_called_once()

    def test_delivered_job_leaves_the_feed(self):
        self.feed.board.apply(snapshot('d1', status='picked_up', assigned_to=COURIER_ID))
        self.client.update_status.return_value = snapshot('d1', status='delivered', assigned_to=COURIER_ID)

        result = self.feed.advance('d1', 'delivered')

        self.assertTrue(result.ok)
        self.assertNotIn('d1', self.feed.board)

    def test_validation_failure_returns_field_errors(self):
        self.client.update_status.side_effect = ValidationFailed(
            'bad', field_errors={'status': ['"x" is not a valid choice.']}, status_code=400
        )
        result = self.feed.advance('d1', 'x')
        self.assertIn('status', result.field_errors)

    def test_live_message_claimed_by_other_courier_is_withdrawn(self):
        self.feed.board.apply(snapshot('d1'))

        self.feed.handle_message({
            'type': 'delivery',
            'delivery': snapshot('d1', status='accepted', assigned_to=OTHER_COURIER_ID),
        })

        self.assertNotIn('d1', self.feed.board)

    def test_live_message_outside_radius_is_dropped(self):
        # Haifa is ~80 km from Tel Aviv
        self.feed.handle_message({'type': 'delivery', 'delivery': snapshot('far', lat=32.7940, lng=34.9896)})
        self.feed.handle_message({'type': 'delivery', 'delivery': snapshot('near')})

        self.assertNotIn('far', self.feed.board)
        self.assertIn('near', self.feed.board)

    def test_withdrawn_message(self):
        self.feed.board.apply(snapshot('d1'))
        self.feed.handle_message({'type': 'delivery_withdrawn', 'delivery_id': 'd1'})
        self.assertEqual(len(self.feed.board), 0)


class APIClientSession:
    """Session stand-in that hands requests to DRF's test client."""

    def __init__(self, api_client):
        self.api_client = api_client

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        parts = urlsplit(url)
        path = f'{parts.path}?{parts.query}' if parts.query else parts.path
        call = getattr(self.api_client, method.lower())
        if method == 'GET':
            return call(path, data=params)
        return call(path, data=json, format='json')


class TestCourierFeedAgainstServer(TestCase):
    """The feed keeps every row the server lists, across pages."""

    def setUp(self):
        cache.clear()
        shop = make_business()
        courier = make_courier(location=TEL_AVIV)

        self.own_job = post_delivery(shop, now=timezone.now() - timedelta(hours=2))
        lifecycle.accept_delivery(self.own_job.pk, courier)
        # More newer candidates than fit on one page
        for minutes in range(settings.REST_FRAMEWORK['PAGE_SIZE'] + 1):
            post_delivery(shop, now=timezone.now() - timedelta(minutes=minutes))

        api_client = APIClient()
        api_client.force_authenticate(user=courier)
        client = DispatchClient('http://testserver', token='session-token', session=APIClientSession(api_client))
        self.feed = CourierFeed(client, courier.pk, radius_km=5.0)
        self.feed.position = TEL_AVIV

    def test_refresh_keeps_own_job_beyond_first_page(self):
        self.feed.refresh()

        self.assertEqual(len(self.feed.board), settings.REST_FRAMEWORK['PAGE_SIZE'] + 2)
        self.assertIn(str(self.own_job.pk), self.feed.board)
        self.assertEqual(self.feed.board.get(self.own_job.pk)['status'], 'accepted')
