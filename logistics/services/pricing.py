"""
Pricing Engine

Computes the delivery fare from straight-line distance and the local
time of creation.

Formula:
    raw   = BaseFee + min(d, 15) * RateNear + max(d - 15, 0) * RateFar
    price = Max(MinimumFare, RoundHalf(raw * TimeMultiplier))
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from django.conf import settings
from django.utils import timezone

from logistics.utils import distance_between

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

# Local-time bands. Hours are [start, end).
RUSH_HOUR_BANDS = ((11, 15), (18, 20))
NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 5
# datetime.weekday(): Monday=0 ... Friday=4, Saturday=5
WEEKEND_DAYS = (4, 5)


@dataclass(frozen=True)
class Quote:
    distance_km: float
    payment: Decimal
    multiplier: Decimal

    def as_dict(self) -> dict:
        return {
            'distance_km': round(self.distance_km, 2),
            'payment': str(self.payment),
            'multiplier': str(self.multiplier),
        }


class PricingEngine:
    """
    Fare calculation engine.

    Pure given (distance, timestamp): the caller passes the time of
    creation, nothing is read from the clock during calculation.
    """

    def __init__(self):
        self.base_fee = Decimal(str(settings.PRICING_BASE_FEE))
        self.rate_near = Decimal(str(settings.PRICING_RATE_NEAR))
        self.rate_far = Decimal(str(settings.PRICING_RATE_FAR))
        self.near_limit_km = Decimal(str(settings.PRICING_NEAR_LIMIT_KM))
        self.minimum_fare = Decimal(str(settings.PRICING_MINIMUM_FARE))
        self.min_distance_km = Decimal(str(settings.PRICING_MIN_DISTANCE_KM))
        self.rounding_step = Decimal(str(settings.PRICING_ROUNDING_STEP))
        self.rush_surcharge = Decimal(str(settings.PRICING_RUSH_SURCHARGE))
        self.night_surcharge = Decimal(str(settings.PRICING_NIGHT_SURCHARGE))
        self.weekend_surcharge = Decimal(str(settings.PRICING_WEEKEND_SURCHARGE))

    def time_multiplier(self, when: datetime) -> Decimal:
        """
        Surge multiplier for a point in time.

        Rush hours (11-15, 18-20), night (22-05) and weekend (Fri, Sat)
        surcharges compose multiplicatively.
        """
        if timezone.is_aware(when):
            when = timezone.localtime(when)
        hour = when.hour

        multiplier = Decimal('1')
        if any(start <= hour < end for start, end in RUSH_HOUR_BANDS):
            multiplier *= self.rush_surcharge
        if hour >= NIGHT_START_HOUR or hour < NIGHT_END_HOUR:
            multiplier *= self.night_surcharge
        if when.weekday() in WEEKEND_DAYS:
            multiplier *= self.weekend_surcharge
        return multiplier

    def round_to_step(self, amount: Decimal) -> Decimal:
        """
        Round to the nearest rounding step (0.5 by default).

        Example: 88.75 -> 89.00, 88.70 -> 88.50, 15.24 -> 15.00
        """
        steps = (amount / self.rounding_step).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
        return (steps * self.rounding_step).quantize(Decimal('0.01'))

    def price_for_distance(self, distance_km, when: datetime) -> Decimal:
        """
        Fare for a distance at a given time.

        Non-numeric, non-finite or negative distances price at 0 so a
        half-filled form never blocks. Short trips are floored at the
        minimum distance.
        """
        try:
            distance = float(distance_km)
        except (TypeError, ValueError):
            return ZERO
        if not math.isfinite(distance) or distance < 0:
            return ZERO

        d = max(Decimal(str(distance)), self.min_distance_km)
        near = min(d, self.near_limit_km) * self.rate_near
        far = max(d - self.near_limit_km, Decimal('0')) * self.rate_far
        raw = self.base_fee + near + far

        surged = raw * self.time_multiplier(when)
        return max(self.minimum_fare, self.round_to_step(surged)).quantize(Decimal('0.01'))

    def quote(
        self,
        origin: Optional[Tuple[float, float]],
        destination: Optional[Tuple[float, float]],
        when: Optional[datetime] = None
    ) -> Quote:
        """
        Quote a trip between two (lat, lng) points.

        Missing coordinates yield a zero quote instead of an error.
        """
        when = when or timezone.now()
        if not origin or not destination or None in (*origin, *destination):
            return Quote(distance_km=0.0, payment=ZERO, multiplier=self.time_multiplier(when))

        distance_km = distance_between(origin, destination)
        payment = self.price_for_distance(distance_km, when)

        logger.debug(f"[PRICING] {distance_km:.2f} km at {when.isoformat()} -> {payment}")
        return Quote(
            distance_km=distance_km,
            payment=payment,
            multiplier=self.time_multiplier(when),
        )


def get_pricing_engine() -> PricingEngine:
    """Engine built from current settings (tests override settings)."""
    return PricingEngine()
