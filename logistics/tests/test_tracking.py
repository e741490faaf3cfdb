"""
Courier location tracking tests.
"""

from datetime import timedelta
from unittest.mock import patch

from django.core.cache import cache
from django.test import TestCase, override_settings
from django.utils import timezone

from logistics.models import CourierLocation, CourierLocationPing, DeliveryStatus
from logistics.services import lifecycle
from logistics.services.tracking import (
    LocationError,
    active_courier_locations,
    current_location,
    location_history,
    prune_history,
    update_courier_location,
)
from logistics.tasks import prune_location_history
from logistics.tests.helpers import (
    HAIFA,
    TEL_AVIV,
    make_business,
    make_courier,
    north_of,
    post_delivery,
    tuesday_at,
)


class TestLocationSlot(TestCase):

    def setUp(self):
        cache.clear()
        self.courier = make_courier()

    def test_slot_is_overwritten(self):
        update_courier_location(self.courier, *TEL_AVIV)
        update_courier_location(self.courier, *HAIFA)

        self.assertEqual(CourierLocation.objects.filter(courier=self.courier).count(), 1)
        self.assertEqual(current_location(self.courier.pk).point, HAIFA)

    def test_no_slot_before_first_update(self):
        self.assertIsNone(current_location(self.courier.pk))

    def test_non_courier_is_rejected(self):
        with self.assertRaises(LocationError):
            update_courier_location(make_business(), *TEL_AVIV)

    def test_invalid_coordinates_are_rejected(self):
        for lat, lng in [(91, 0), (0, 181), (float('nan'), 0), (None, 34.0), ('32', '34')]:
            with self.subTest(lat=lat, lng=lng):
                with self.assertRaises(LocationError):
                    update_courier_location(self.courier, lat, lng)
        self.assertIsNone(current_location(self.courier.pk))

    def test_recently_updated_filter(self):
        stale = make_courier(email='stale@example.com', name='Stale')
        update_courier_location(self.courier, *TEL_AVIV)
        update_courier_location(stale, *HAIFA, now=timezone.now() - timedelta(hours=2))

        everyone = active_courier_locations()
        recent = active_courier_locations(max_age_minutes=10)

        self.assertEqual({loc.courier_id for loc in everyone}, {self.courier.pk, stale.pk})
        self.assertEqual([loc.courier_id for loc in recent], [self.courier.pk])


class TestLocationHistory(TestCase):

    def setUp(self):
        cache.clear()
        self.courier = make_courier()

    @override_settings(LOCATION_HISTORY_INTERVAL_SECONDS=60)
    def test_history_is_sampled(self):
        for km in range(5):
            update_courier_location(self.courier, *north_of(TEL_AVIV, km * 0.1))

        self.assertEqual(CourierLocationPing.objects.filter(courier=self.courier).count(), 1)
        # The slot still follows every update
        self.assertAlmostEqual(current_location(self.courier.pk).latitude, north_of(TEL_AVIV, 0.4)[0])

    @override_settings(LOCATION_HISTORY_INTERVAL_SECONDS=0)
    def test_zero_interval_records_every_update(self):
        for km in range(3):
            update_courier_location(self.courier, *north_of(TEL_AVIV, km))

        self.assertEqual(CourierLocationPing.objects.filter(courier=self.courier).count(), 3)

    @override_settings(LOCATION_HISTORY_INTERVAL_SECONDS=60)
    def test_sampling_is_per_courier(self):
        other = make_courier(email='other@example.com', name='Other')
        update_courier_location(self.courier, *TEL_AVIV)
        update_courier_location(other, *HAIFA)

        self.assertEqual(CourierLocationPing.objects.count(), 2)

    def test_history_window(self):
        for hour in (8, 9, 10, 11):
            CourierLocationPing.objects.create(
                courier=self.courier, latitude=TEL_AVIV[0], longitude=TEL_AVIV[1],
                recorded_at=tuesday_at(hour),
            )

        pings = location_history(self.courier.pk, since=tuesday_at(9), until=tuesday_at(10))
        self.assertEqual([p.recorded_at for p in pings], [tuesday_at(9), tuesday_at(10)])


class TestPruning(TestCase):

    def setUp(self):
        self.courier = make_courier()
        now = timezone.now()
        for days in (1, 29, 31, 60):
            CourierLocationPing.objects.create(
                courier=self.courier, latitude=TEL_AVIV[0], longitude=TEL_AVIV[1],
                recorded_at=now - timedelta(days=days),
            )
        self.now = now

    @override_settings(LOCATION_HISTORY_RETENTION_DAYS=30)
    def test_prune_uses_retention_setting(self):
        self.assertEqual(prune_history(now=self.now), 2)
        self.assertEqual(CourierLocationPing.objects.count(), 2)

    def test_prune_explicit_retention(self):
        self.assertEqual(prune_history(retention_days=7, now=self.now), 3)

    def test_prune_leaves_slot_alone(self):
        update_courier_location(self.courier, *TEL_AVIV)
        prune_history(retention_days=0)
        self.assertIsNotNone(current_location(self.courier.pk))

    def test_task_prunes(self):
        deleted = prune_location_history.apply(kwargs={'retention_days': 0}).get()
        self.assertEqual(deleted, 4)
        self.assertFalse(CourierLocationPing.objects.exists())


class TestLocationBroadcast(TestCase):

    def setUp(self):
        cache.clear()
        self.courier = make_courier()
        self.shop = make_business()

    def test_broadcast_after_commit_with_active_jobs(self):
        delivery = post_delivery(self.shop)
        lifecycle.accept_delivery(delivery.pk, self.courier)
        finished = post_delivery(self.shop)
        lifecycle.accept_delivery(finished.pk, self.courier)
        lifecycle.advance_delivery(finished.pk, self.courier, DeliveryStatus.PICKED_UP)
        lifecycle.advance_delivery(finished.pk, self.courier, DeliveryStatus.DELIVERED)

        with patch('logistics.events.broadcast_courier_location') as mock_broadcast:
            with self.captureOnCommitCallbacks(execute=True):
                update_courier_location(self.courier, *TEL_AVIV)

        mock_broadcast.assert_called_once()
        location, active_ids = mock_broadcast.call_args[0]
        self.assertEqual(location.courier_id, self.courier.pk)
        self.assertEqual(active_ids, [delivery.pk])

    def test_rejected_update_is_not_broadcast(self):
        with patch('logistics.events.broadcast_courier_location') as mock_broadcast:
            with self.captureOnCommitCallbacks(execute=True):
                with self.assertRaises(LocationError):
                    update_courier_location(self.courier, 200, 0)

        mock_broadcast.assert_not_called()
