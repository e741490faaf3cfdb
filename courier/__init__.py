"""
COURIER - Client toolkit for the dispatch API

Python-side contract of a dashboard client:
- DispatchClient: authenticated REST calls with a typed error taxonomy
- CourierFeed: radius feed with debounced re-queries, ordered responses
  and confirmation-first accept / status changes
"""

from .client import (
    AuthenticationError,
    BackendError,
    ConflictError,
    DispatchClient,
    DispatchClientError,
    NotFoundError,
    PermissionDeniedError,
    RaceLostError,
    StaleStateError,
    ValidationFailed,
)
from .feed import ActionResult, CourierFeed, DeliveryBoard, RequeryGate, RequestSequencer

__all__ = [
    'ActionResult',
    'AuthenticationError',
    'BackendError',
    'ConflictError',
    'CourierFeed',
    'DeliveryBoard',
    'DispatchClient',
    'DispatchClientError',
    'NotFoundError',
    'PermissionDeniedError',
    'RaceLostError',
    'RequeryGate',
    'RequestSequencer',
    'StaleStateError',
    'ValidationFailed',
]
