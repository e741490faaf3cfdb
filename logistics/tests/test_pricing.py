"""
Pricing Engine Tests
====================

Tests for:
1. Tiered distance formula and the 1 km floor
2. Time multipliers (rush, night, weekend)
3. Rounding to the nearest 0.5 and the minimum fare
4. Degraded input (negative, non-finite, missing)
"""

import math
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal

from django.test import TestCase, override_settings
from django.utils import timezone

from logistics.services.pricing import PricingEngine, get_pricing_engine
from logistics.tests.helpers import HAIFA, TEL_AVIV, tuesday_at


def local(year, month, day, hour, minute=0):
    return timezone.make_aware(datetime(year, month, day, hour, minute))


class TestPricingFormula(TestCase):
    """Distance tiers and minimum fare at a neutral time."""

    def setUp(self):
        self.engine = PricingEngine()
        self.neutral = tuesday_at(10)

    def test_rush_hour_example(self):
        """20 km on a Tuesday at 13:00: (10 + 15*3.2 + 5*2.6) * 1.25 = 88.75 -> 89.00"""
        self.assertEqual(self.engine.price_for_distance(20, tuesday_at(13)), Decimal('89.00'))

    def test_near_tier_only(self):
        """10 km: 10 + 32 = 42"""
        self.assertEqual(self.engine.price_for_distance(10, self.neutral), Decimal('42.00'))

    def test_far_tier_rate(self):
        """30 km: 10 + 48 + 15*2.6 = 97"""
        self.assertEqual(self.engine.price_for_distance(30, self.neutral), Decimal('97.00'))

    def test_zero_distance_is_minimum_fare(self):
        self.assertEqual(self.engine.price_for_distance(0, self.neutral), Decimal('15.00'))

    def test_short_trip_floored_to_one_km(self):
        self.assertEqual(
            self.engine.price_for_distance(0.2, self.neutral),
            self.engine.price_for_distance(1, self.neutral),
        )

    def test_never_below_minimum_fare(self):
        for km in (0, 0.5, 1, 1.5):
            self.assertGreaterEqual(self.engine.price_for_distance(km, self.neutral), Decimal('15.00'))

    def test_monotonic_in_distance(self):
        when = tuesday_at(19)
        previous = Decimal('0')
        for step in range(0, 161):
            price = self.engine.price_for_distance(step * 0.5, when)
            self.assertGreaterEqual(price, previous)
            previous = price

    def test_deterministic(self):
        when = tuesday_at(13)
        self.assertEqual(
            self.engine.price_for_distance(17.3, when),
            PricingEngine().price_for_distance(17.3, when),
        )

    @override_settings(PRICING_MINIMUM_FARE='50')
    def test_minimum_fare_from_settings(self):
        self.assertEqual(get_pricing_engine().price_for_distance(3, self.neutral), Decimal('50.00'))


class TestDegradedInput(TestCase):
    """Bad distances price at zero instead of raising."""

    def setUp(self):
        self.engine = PricingEngine()
        self.when = tuesday_at(10)

    def test_negative_distance(self):
        self.assertEqual(self.engine.price_for_distance(-3, self.when), Decimal('0.00'))

    def test_non_finite_distance(self):
        for value in (math.nan, math.inf, -math.inf):
            self.assertEqual(self.engine.price_for_distance(value, self.when), Decimal('0.00'))

    def test_non_numeric_distance(self):
        for value in (None, 'far', object()):
            self.assertEqual(self.engine.price_for_distance(value, self.when), Decimal('0.00'))

    def test_quote_without_origin(self):
        quote = self.engine.quote(None, HAIFA, when=self.when)
        self.assertEqual(quote.payment, Decimal('0.00'))
        self.assertEqual(quote.distance_km, 0.0)


class TestTimeMultiplier(TestCase):
    """Local-time surcharges compose multiplicatively."""

    def setUp(self):
        self.engine = PricingEngine()

    def test_neutral_hours(self):
        for hour in (5, 10, 15, 17, 20, 21):
            self.assertEqual(self.engine.time_multiplier(tuesday_at(hour)), Decimal('1'), hour)

    def test_rush_bands(self):
        for hour in (11, 12, 14, 18, 19):
            self.assertEqual(self.engine.time_multiplier(tuesday_at(hour)), Decimal('1.25'), hour)

    def test_rush_band_ends_are_exclusive(self):
        self.assertEqual(self.engine.time_multiplier(tuesday_at(14, 59)), Decimal('1.25'))
        self.assertEqual(self.engine.time_multiplier(tuesday_at(15, 0)), Decimal('1'))

    def test_night(self):
        for hour in (22, 23, 0, 3, 4):
            when = tuesday_at(hour) if hour >= 22 else local(2026, 1, 7, hour)
            self.assertEqual(self.engine.time_multiplier(when), Decimal('1.15'), hour)

    def test_weekend_is_friday_and_saturday(self):
        self.assertEqual(self.engine.time_multiplier(local(2026, 1, 9, 10)), Decimal('1.10'))
        self.assertEqual(self.engine.time_multiplier(local(2026, 1, 10, 10)), Decimal('1.10'))
        self.assertEqual(self.engine.time_multiplier(local(2026, 1, 11, 10)), Decimal('1'))

    def test_rush_applies_on_weekends_too(self):
        self.assertEqual(self.engine.time_multiplier(local(2026, 1, 11, 13)), Decimal('1.25'))
        self.assertEqual(self.engine.time_multiplier(local(2026, 1, 9, 13)), Decimal('1.375'))

    def test_saturday_night(self):
        self.assertEqual(self.engine.time_multiplier(local(2026, 1, 10, 23)), Decimal('1.265'))

    def test_utc_input_is_read_in_local_time(self):
        # 11:00 UTC is 13:00 in Asia/Jerusalem in winter
        utc_time = datetime(2026, 1, 6, 11, 0, tzinfo=dt_timezone.utc)
        self.assertEqual(self.engine.time_multiplier(utc_time), Decimal('1.25'))

    def test_naive_datetime_is_accepted(self):
        self.assertEqual(self.engine.time_multiplier(datetime(2026, 1, 6, 13)), Decimal('1.25'))

    def test_night_price(self):
        """10 km at 23:00: 42 * 1.15 = 48.3 -> 48.50"""
        self.assertEqual(self.engine.price_for_distance(10, tuesday_at(23)), Decimal('48.50'))

    def test_friday_rush_price(self):
        """20 km, Friday 13:00: 71 * 1.375 = 97.625 -> 97.50"""
        self.assertEqual(self.engine.price_for_distance(20, local(2026, 1, 9, 13)), Decimal('97.50'))


class TestRounding(TestCase):

    def setUp(self):
        self.engine = PricingEngine()

    def test_round_to_half(self):
        cases = {
            '88.75': '89.00',
            '88.70': '88.50',
            '88.74': '88.50',
            '15.24': '15.00',
            '15.25': '15.50',
            '42.00': '42.00',
        }
        for raw, expected in cases.items():
            self.assertEqual(self.engine.round_to_step(Decimal(raw)), Decimal(expected), raw)


class TestQuote(TestCase):

    def test_quote_between_cities(self):
        quote = PricingEngine().quote(TEL_AVIV, HAIFA, when=tuesday_at(10))

        self.assertAlmostEqual(quote.distance_km, 81.5, delta=2.0)
        self.assertEqual(quote.payment, PricingEngine().price_for_distance(quote.distance_km, tuesday_at(10)))
        self.assertEqual(quote.as_dict()['multiplier'], '1')
