"""
Courier feed

Client-side state of the courier dashboard:

- RequeryGate decides when a position or radius change deserves a new
  feed query (trailing debounce plus a movement threshold)
- RequestSequencer drops responses that arrive after a newer request's
- DeliveryBoard holds the visible rows, replaced whole by each snapshot
- CourierFeed ties them to a DispatchClient. Accept and status changes
  only touch local state after the server confirmed them.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from logistics.utils import haversine_km, radius_for_zoom

from .client import (
    AuthenticationError,
    BackendError,
    DispatchClient,
    DispatchClientError,
    RaceLostError,
    StaleStateError,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

RACE_LOST_MESSAGE = 'Someone else already took this delivery.'
STALE_STATE_MESSAGE = 'This delivery changed in the meantime. The list was refreshed.'
GENERIC_FAILURE_MESSAGE = 'Something went wrong. Please try again.'

DEFAULT_DEBOUNCE_SECONDS = 2.0
DEFAULT_MIN_MOVE_KM = 0.2
DEFAULT_RADIUS_KM = 5.0

ACTIVE_STATUSES = ('accepted', 'picked_up')


# ============================================
# RE-QUERY GATE
# ============================================

class RequeryGate:
    """
    Rate limit for radius re-queries.

    Position ticks arrive every few seconds. A tick only schedules a
    query when the courier moved at least ``min_move_km`` since the last
    query or the radius changed; the query fires once no new qualifying
    tick arrived for ``debounce_seconds``.
    """

    def __init__(self, debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
                 min_move_km: float = DEFAULT_MIN_MOVE_KM,
                 clock: Callable[[], float] = time.monotonic):
        self.debounce_seconds = debounce_seconds
        self.min_move_km = min_move_km
        self.clock = clock
        self.last_query: Optional[Tuple[float, float, float]] = None
        self.pending: Optional[Tuple[float, float, float]] = None
        self.deadline: Optional[float] = None

    def is_significant(self, lat: float, lng: float, radius_km: float) -> bool:
        if self.last_query is None:
            return True
        last_lat, last_lng, last_radius = self.last_query
        if radius_km != last_radius:
            return True
        return haversine_km(last_lat, last_lng, lat, lng) >= self.min_move_km

    def observe(self, lat: float, lng: float, radius_km: float) -> bool:
        """Record a position/radius; returns True when a query is now scheduled."""
        if not self.is_significant(lat, lng, radius_km):
            return self.pending is not None
        self.pending = (lat, lng, radius_km)
        self.deadline = self.clock() + self.debounce_seconds
        return True

    def due(self) -> Optional[Tuple[float, float, float]]:
        """The (lat, lng, radius) to query now, or None while still settling."""
        if self.pending is None or self.clock() < self.deadline:
            return None
        params = self.pending
        self.mark_queried(*params)
        return params

    def mark_queried(self, lat: float, lng: float, radius_km: float):
        self.last_query = (lat, lng, radius_km)
        self.pending = None
        self.deadline = None


# ============================================
# RESPONSE ORDERING
# ============================================

class RequestSequencer:
    """Last-response-wins by request start order."""

    def __init__(self):
        self._started = 0
        self._applied = 0

    def begin(self) -> int:
        self._started += 1
        return self._started

    def should_apply(self, ticket: int) -> bool:
        """True unless a newer request's response was already applied."""
        if ticket <= self._applied:
            return False
        self._applied = ticket
        return True


# ============================================
# LOCAL ROWS
# ============================================

class DeliveryBoard:
    """
    Visible deliveries keyed by id.

    Every update is a full snapshot that replaces the stored row, so
    applying the same snapshot twice leaves the board unchanged. With
    ``business_id`` set, rows of any other business are refused.
    """

    def __init__(self, business_id: Optional[str] = None):
        self.business_id = str(business_id) if business_id else None
        self._rows: Dict[str, dict] = {}

    def _accepts(self, snapshot: dict) -> bool:
        if self.business_id is None:
            return True
        return str(snapshot.get('business_id')) == self.business_id

    def replace_all(self, snapshots: Iterable[dict]):
        self._rows = {str(s['id']): s for s in snapshots if self._accepts(s)}

    def apply(self, snapshot: dict) -> bool:
        if not self._accepts(snapshot):
            logger.warning(f"[FEED] Dropped foreign delivery {snapshot.get('id')}")
            return False
        self._rows[str(snapshot['id'])] = snapshot
        return True

    def withdraw(self, delivery_id) -> bool:
        return self._rows.pop(str(delivery_id), None) is not None

    def get(self, delivery_id) -> Optional[dict]:
        return self._rows.get(str(delivery_id))

    def rows(self) -> List[dict]:
        """Newest first."""
        return sorted(self._rows.values(), key=lambda s: s.get('created_at') or '', reverse=True)

    def __len__(self):
        return len(self._rows)

    def __contains__(self, delivery_id):
        return str(delivery_id) in self._rows


# ============================================
# COURIER FEED
# ============================================

@dataclass
class ActionResult:
    ok: bool
    delivery: Optional[dict] = None
    message: str = ''
    field_errors: dict = field(default_factory=dict)
    refreshed: bool = False


class CourierFeed:
    """
    The courier's candidate and own-job list.

    Feed it position ticks (``on_position``), call ``poll`` from the UI
    loop, and push WebSocket messages into ``handle_message``.
    Authentication failures propagate; every other failure of a user
    action comes back as an ActionResult with a short message.
    """

    def __init__(self, client: DispatchClient, courier_id, radius_km: float = DEFAULT_RADIUS_KM,
                 gate: Optional[RequeryGate] = None):
        self.client = client
        self.courier_id = str(courier_id)
        self.radius_km = radius_km
        self.position: Optional[Tuple[float, float]] = None
        self.gate = gate or RequeryGate()
        self.sequencer = RequestSequencer()
        self.board = DeliveryBoard()

    # === Inputs ===

    def on_position(self, lat: float, lng: float) -> bool:
        self.position = (lat, lng)
        return self.gate.observe(lat, lng, self.radius_km)

    def set_radius(self, radius_km: float) -> bool:
        self.radius_km = max(0.0, float(radius_km))
        if self.position is None:
            return False
        return self.gate.observe(self.position[0], self.position[1], self.radius_km)

    def set_zoom(self, zoom: int) -> bool:
        return self.set_radius(radius_for_zoom(zoom))

    def poll(self) -> bool:
        """Run the re-query if the gate says it is time. Returns True if it ran."""
        params = self.gate.due()
        if params is None:
            return False
        lat, lng, radius_km = params
        try:
            self._query(lat, lng, radius_km)
        except BackendError as e:
            logger.warning(f"[FEED] Re-query failed, keeping the current rows: {e}")
        return True

    def refresh(self):
        """Re-query immediately, bypassing the debounce."""
        lat, lng = self.position if self.position else (None, None)
        if self.position is not None:
            self.gate.mark_queried(lat, lng, self.radius_km)
        self._query(lat, lng, self.radius_km)

    def _query(self, lat, lng, radius_km):
        ticket = self.sequencer.begin()
        rows = self.client.list_deliveries(lat=lat, lng=lng, radius_km=radius_km)
        if self.sequencer.should_apply(ticket):
            self.board.replace_all(rows)
        else:
            logger.debug(f"[FEED] Discarded out-of-order response #{ticket}")

    # === Live updates ===

    def _visible(self, snapshot: dict) -> bool:
        assigned_to = snapshot.get('assigned_to')
        if assigned_to is not None:
            return str(assigned_to) == self.courier_id and snapshot.get('status') in ACTIVE_STATUSES
        if snapshot.get('status') != 'posted':
            return False
        if self.position is None:
            return False
        location = snapshot.get('business_location') or {}
        return haversine_km(
            self.position[0], self.position[1], location.get('latitude'), location.get('longitude')
        ) <= self.radius_km

    def handle_message(self, message: dict):
        """Apply one WebSocket message from ws/courier/."""
        kind = message.get('type')
        if kind == 'delivery':
            snapshot = message['delivery']
            if self._visible(snapshot):
                self.board.apply(snapshot)
            else:
                self.board.withdraw(snapshot['id'])
        elif kind == 'delivery_withdrawn':
            self.board.withdraw(message['delivery_id'])

    # === Actions ===

    def _failure(self, error: DispatchClientError) -> ActionResult:
        if isinstance(error, AuthenticationError):
            raise error
        if isinstance(error, ValidationFailed):
            return ActionResult(ok=False, message=error.message, field_errors=error.field_errors)
        if isinstance(error, BackendError):
            return ActionResult(ok=False, message=GENERIC_FAILURE_MESSAGE)
        return ActionResult(ok=False, message=error.message)

    def accept(self, delivery_id) -> ActionResult:
        """Claim a candidate. The row only changes once the server confirmed."""
        try:
            delivery = self.client.accept(delivery_id)
        except RaceLostError:
            logger.info(f"[FEED] Lost the race for {delivery_id}")
            self.board.withdraw(delivery_id)
            return ActionResult(ok=False, message=RACE_LOST_MESSAGE)
        except DispatchClientError as e:
            return self._failure(e)

        self.board.apply(delivery)
        return ActionResult(ok=True, delivery=delivery)

    def advance(self, delivery_id, status: str) -> ActionResult:
        """Mark an own job picked up or delivered. Stale state triggers a refresh, not a retry."""
        try:
            delivery = self.client.update_status(delivery_id, status)
        except StaleStateError as e:
            logger.info(f"[FEED] Stale state on {delivery_id}: {e.message}")
            try:
                self.refresh()
            except BackendError:
                return ActionResult(ok=False, message=STALE_STATE_MESSAGE)
            return ActionResult(ok=False, message=STALE_STATE_MESSAGE, refreshed=True)
        except DispatchClientError as e:
            return self._failure(e)

        if delivery.get('status') in ACTIVE_STATUSES:
            self.board.apply(delivery)
        else:
            # Delivered jobs leave the active feed
            self.board.withdraw(delivery_id)
        return ActionResult(ok=True, delivery=delivery)
