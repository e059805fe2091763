# accounts/auth/ws_jwt.py
import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async

from accounts.auth.identity import resolve_principal
from MessagingApp.errors import Unauthenticated

logger = logging.getLogger(__name__)


def extract_token(scope) -> str | None:
    """
    Looks for the access token, in order:
      1) Authorization: Bearer <token>
      2) Cookie access_token
      3) Subprotocols "jwt, <token>"
      4) Querystring ?token=
    """
    headers = dict(scope.get("headers") or [])

    auth = headers.get(b"authorization")
    if auth:
        scheme, _, value = auth.decode().partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()

    cookies_raw = headers.get(b"cookie")
    if cookies_raw:
        for part in cookies_raw.decode().split(";"):
            if "=" in part:
                k, v = part.strip().split("=", 1)
                if k == "access_token" and v:
                    return v

    subprotocols = scope.get("subprotocols") or []
    if len(subprotocols) >= 2 and subprotocols[0] == "jwt":
        return subprotocols[1]

    qs = parse_qs(scope.get("query_string", b"").decode())
    return (qs.get("token") or [None])[0]


class JWTAuthMiddleware:
    """
    ASGI middleware for the live channel. Sets scope['user'] to the resolved
    principal, or None plus scope['auth_error'] when the credential is rejected.
    The consumer closes unauthenticated connections before accepting them.
    """
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "websocket":
            return await self.app(scope, receive, send)

        scope = dict(scope)
        scope["user"] = None
        scope["auth_error"] = None

        try:
            scope["user"] = await database_sync_to_async(resolve_principal)(extract_token(scope))
        except Unauthenticated as exc:
            logger.info("ws handshake rejected: %s", exc.message)
            scope["auth_error"] = exc.message

        return await self.app(scope, receive, send)
