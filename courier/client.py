"""
Dispatch API client

Thin wrapper over ``requests`` for the REST surface. Every request
carries the bearer token; every non-2xx answer becomes a typed
exception whose message is the server's error text, unchanged.

No call is retried automatically: the user re-triggers the action.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


# ============================================
# ERRORS
# ============================================

class DispatchClientError(Exception):
    """Base class for client failures. ``body`` is the decoded error body, if any."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class AuthenticationError(DispatchClientError):
    """No token, or the server rejected it (401). Sign in again."""


class ValidationFailed(DispatchClientError):
    """400: ``field_errors`` maps field names to messages for inline display."""

    def __init__(self, message: str, field_errors: Optional[dict] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field_errors = field_errors or {}


class PermissionDeniedError(DispatchClientError):
    """403."""


class NotFoundError(DispatchClientError):
    """404: missing, or not visible to the caller."""


class ConflictError(DispatchClientError):
    """409 outside the delivery endpoints (e.g. role already chosen)."""


class RaceLostError(ConflictError):
    """409 on accept: another courier claimed the delivery first."""


class StaleStateError(ConflictError):
    """409 on a status change: refresh local state instead of retrying."""


class BackendError(DispatchClientError):
    """5xx, timeout, connection failure or an unreadable body."""


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        for key in ('error', 'detail'):
            if body.get(key):
                return str(body[key])
    return fallback


def _field_errors(body: Any) -> dict:
    if not isinstance(body, dict):
        return {}
    if isinstance(body.get('errors'), dict):
        return body['errors']
    return {k: v for k, v in body.items() if k not in ('error', 'code', 'detail')}


# ============================================
# CLIENT
# ============================================

class DispatchClient:
    """
    REST client for one signed-in account.

    Usage:
        client = DispatchClient('http://localhost:8000')
        client.login('courier01@example.com', 'Passw0rd!')
        feed = client.list_deliveries(lat=32.08, lng=34.78, radius_km=5)
    """

    def __init__(self, base_url: str, token: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.refresh_token = None
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        if path.startswith(('http://', 'https://')):
            return path
        return f"{self.base_url}/api/{path.lstrip('/')}"

    def _request(self, method: str, path: str, *, json: Optional[dict] = None,
                 params: Optional[dict] = None, auth: bool = True,
                 conflict_error=ConflictError) -> Any:
        headers = {'Accept': 'application/json'}
        if auth:
            if not self.token:
                raise AuthenticationError("not signed in")
            headers['Authorization'] = f'Bearer {self.token}'

        try:
            response = self.session.request(
                method,
                self._url(path),
                json=json,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            logger.warning(f"[CLIENT] {method} {path} timed out: {e}")
            raise BackendError("the server did not answer in time") from e
        except requests.RequestException as e:
            logger.warning(f"[CLIENT] {method} {path} failed: {e}")
            raise BackendError("could not reach the server") from e

        return self._handle_response(method, path, response, conflict_error)

    def _handle_response(self, method, path, response, conflict_error) -> Any:
        status = response.status_code
        try:
            body = response.json() if response.content else None
        except ValueError:
            body = None
            if 200 <= status < 300:
                raise BackendError("malformed response from server", status_code=status)

        if 200 <= status < 300:
            return body

        message = _error_message(body, response.text or response.reason or f'HTTP {status}')
        kwargs = {'status_code': status, 'body': body}
        logger.info(f"[CLIENT] {method} {path} -> {status}: {message}")

        if status == 401:
            raise AuthenticationError(message, **kwargs)
        if status == 400:
            raise ValidationFailed(message, field_errors=_field_errors(body), **kwargs)
        if status == 403:
            raise PermissionDeniedError(message, **kwargs)
        if status == 404:
            raise NotFoundError(message, **kwargs)
        if status == 409:
            raise conflict_error(message, **kwargs)
        if status >= 500:
            raise BackendError(message, **kwargs)
        raise DispatchClientError(message, **kwargs)

    def _list(self, path: str, params: Optional[dict] = None) -> List[dict]:
        """
        Fetch every page of a list endpoint.

        ``next`` links are absolute and already carry the query string.
        A partial list is never returned: a failing page raises.
        """
        body = self._request('GET', path, params=params)
        if isinstance(body, list):
            return body
        if not isinstance(body, dict) or 'results' not in body:
            raise BackendError("malformed list response from server")

        rows = list(body['results'])
        while body.get('next'):
            body = self._request('GET', body['next'])
            if not isinstance(body, dict) or 'results' not in body:
                raise BackendError("malformed list response from server")
            rows.extend(body['results'])
        return rows

    # ============================================
    # Accounts
    # ============================================

    def login(self, email: str, password: str) -> dict:
        """Obtain a token pair and keep the access token for later calls."""
        body = self._request('POST', 'auth/token/', json={'email': email, 'password': password}, auth=False)
        if not isinstance(body, dict) or 'access' not in body:
            raise BackendError("malformed token response from server")
        self.token = body['access']
        self.refresh_token = body.get('refresh')
        return body

    def register(self, email: str, password: str, display_name: str = '') -> dict:
        return self._request(
            'POST', 'users/',
            json={'email': email, 'password': password, 'display_name': display_name},
            auth=False,
        )

    def me(self) -> dict:
        return self._request('GET', 'users/me/')

    def update_me(self, **fields) -> dict:
        return self._request('PATCH', 'users/me/', json=fields)

    def select_role(self, role: str, **profile) -> dict:
        return self._request('POST', 'users/me/role/', json={'role': role, **profile})

    def couriers(self) -> List[dict]:
        return self._list('users/couriers/')

    def businesses(self) -> List[dict]:
        return self._list('users/businesses/')

    # ============================================
    # Deliveries
    # ============================================

    def list_deliveries(self, lat: Optional[float] = None, lng: Optional[float] = None,
                        radius_km: Optional[float] = None, zoom: Optional[int] = None,
                        status: Optional[str] = None, **filters) -> List[dict]:
        params = {'lat': lat, 'lng': lng, 'r': radius_km, 'zoom': zoom, 'status': status, **filters}
        params = {k: v for k, v in params.items() if v is not None}
        return self._list('deliveries/', params=params)

    def get_delivery(self, delivery_id) -> dict:
        return self._request('GET', f'deliveries/{delivery_id}/')

    def create_delivery(self, item: str, destination_address: str,
                        destination_latitude: float, destination_longitude: float,
                        destination_place_id: str = '') -> dict:
        return self._request('POST', 'deliveries/', json={
            'item': item,
            'destination_address': destination_address,
            'destination_latitude': destination_latitude,
            'destination_longitude': destination_longitude,
            'destination_place_id': destination_place_id,
        })

    def quote(self, destination_latitude: float, destination_longitude: float) -> dict:
        return self._request('POST', 'deliveries/quote/', json={
            'destination_latitude': destination_latitude,
            'destination_longitude': destination_longitude,
        })

    def accept(self, delivery_id) -> dict:
        """Claim a posted delivery. Raises RaceLostError when someone else won."""
        return self._request('POST', f'deliveries/{delivery_id}/accept/', conflict_error=RaceLostError)

    def update_status(self, delivery_id, status: str) -> dict:
        """Advance an own delivery. Raises StaleStateError when it moved meanwhile."""
        return self._request(
            'PATCH', f'deliveries/{delivery_id}/',
            json={'status': status},
            conflict_error=StaleStateError,
        )

    def delivery_courier_location(self, delivery_id) -> dict:
        return self._request('GET', f'deliveries/{delivery_id}/courier-location/')

    # ============================================
    # Courier location
    # ============================================

    def update_location(self, latitude: float, longitude: float) -> dict:
        return self._request('POST', 'courier/location/', json={'latitude': latitude, 'longitude': longitude})

    def my_location(self) -> dict:
        return self._request('GET', 'courier/location/')

    def courier_locations(self, max_age_minutes: Optional[int] = None) -> List[dict]:
        params = {'max_age_minutes': max_age_minutes} if max_age_minutes else None
        return self._list('couriers/locations/', params=params)

    # ============================================
    # Reports
    # ============================================

    def admin_overview(self) -> Dict[str, Any]:
        return self._request('GET', 'reports/overview/')

    def daily_trend(self, range_name: str = 'week') -> Dict[str, Any]:
        return self._request('GET', 'reports/trends/', params={'range': range_name})

    def leaderboard(self) -> List[dict]:
        return self._request('GET', 'reports/leaderboard/')

    def business_summary(self) -> Dict[str, Any]:
        return self._request('GET', 'reports/business/')
