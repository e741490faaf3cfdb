"""
WebSocket Authentication Middleware
===================================

Browsers cannot set an Authorization header on a WebSocket handshake,
so sockets pass the access token as ``?token=<jwt>``. The token is
validated with the same simplejwt settings the REST API uses and the
resolved user is placed in ``scope['user']``.
"""

import logging
from urllib.parse import parse_qs

from channels.auth import AuthMiddlewareStack
from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import AuthenticationFailed, InvalidToken, TokenError

logger = logging.getLogger(__name__)


@database_sync_to_async
def get_user_for_token(raw_token: str):
    """Resolve a raw access token to a user, or AnonymousUser if invalid."""
    authenticator = JWTAuthentication()
    try:
        validated = authenticator.get_validated_token(raw_token)
        return authenticator.get_user(validated)
    except (InvalidToken, TokenError, AuthenticationFailed) as e:
        logger.info(f"[WS] Rejected token: {e}")
        return AnonymousUser()


class JWTAuthMiddleware(BaseMiddleware):
    """Populate scope['user'] from a ``token`` query-string parameter."""

    async def __call__(self, scope, receive, send):
        query = parse_qs(scope.get('query_string', b'').decode())
        token = (query.get('token') or [None])[0]
        if token:
            scope['user'] = await get_user_for_token(token)
        return await super().__call__(scope, receive, send)


def JWTAuthMiddlewareStack(inner):
    """Session auth first, then the token overrides it when present."""
    return AuthMiddlewareStack(JWTAuthMiddleware(inner))
