"""WebSocket authentication middleware for JWT and Cookie-based auth."""

import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken

User = get_user_model()
logger = logging.getLogger(__name__)


@database_sync_to_async
def get_user_for_token(raw_token: str):
    """Resolve an access token to an active user, or AnonymousUser."""
    try:
        access = AccessToken(raw_token)
        return User.objects.get(id=access["user_id"], is_active=True)
    except (TokenError, KeyError, User.DoesNotExist) as e:
        logger.debug("JWT auth failed: %s", e)
        return AnonymousUser()


class JWTOrCookieAuthMiddleware(BaseMiddleware):
    """
    Authenticate WebSocket connections using either:
    1. JWT in querystring (?token=...)
    2. Session cookies - for browser use, when wrapped in AuthMiddlewareStack
    """

    async def __call__(self, scope, receive, send):
        query_string = scope.get("query_string", b"").decode()
        params = parse_qs(query_string)

        # 1) JWT from query params (MOBILE)
        token_list = params.get("token")
        if token_list:
            scope["user"] = await get_user_for_token(token_list[0])
            return await super().__call__(scope, receive, send)

        # 2) Cookie/session auth fallback (BROWSER)
        if "session" in scope:
            scope["user"] = scope.get("user", AnonymousUser())
            return await super().__call__(scope, receive, send)

        # Default: anonymous
        scope["user"] = AnonymousUser()
        return await super().__call__(scope, receive, send)
