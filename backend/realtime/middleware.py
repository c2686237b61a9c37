"""WebSocket authentication middleware for JWT and Cookie-based auth."""

import logging
from urllib.parse import parse_qs

from asgiref.sync import sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken

User = get_user_model()
logger = logging.getLogger(__name__)


def _token_from_scope(scope):
    query_string = scope.get("query_string", b"").decode()
    params = parse_qs(query_string)
    token_list = params.get("token")
    if token_list:
        return token_list[0]

    for name, value in scope.get("headers", []):
        if name == b"access_token":
            return value.decode()
        if name == b"authorization":
            scheme, _, credentials = value.decode().partition(" ")
            if scheme.lower() == "bearer" and credentials:
                return credentials
    return None


class JWTOrCookieAuthMiddleware(BaseMiddleware):
    """
    Authenticate WebSocket connections using either:
    1. JWT in querystring (?token=...) or an access_token / Authorization header
    2. Session cookies - for browser use (wrap with AuthMiddlewareStack)
    """

    async def __call__(self, scope, receive, send):
        token = _token_from_scope(scope)

        # 1) JWT (MOBILE)
        if token:
            try:
                access = AccessToken(token)
                user = await sync_to_async(User.objects.get)(id=access["user_id"])
                scope["user"] = user
            except (TokenError, KeyError, User.DoesNotExist) as e:
                logger.debug("JWT auth failed: %s", e)
                scope["user"] = AnonymousUser()
            return await super().__call__(scope, receive, send)

        # 2) Cookie/session auth fallback (BROWSER)
        if "session" in scope:
            scope["user"] = scope.get("user", AnonymousUser())
            return await super().__call__(scope, receive, send)

        # Default: anonymous
        scope["user"] = AnonymousUser()
        return await super().__call__(scope, receive, send)
