# accounts/auth/identity.py
"""
Resolves a bearer credential to an active principal.

HTTP requests go through simplejwt (``CookieJWTAuthentication``); the live
channel goes through ``resolve_principal`` below. Both verify the same
signing key, algorithm and ``is_active`` flag.
"""
import logging

import jwt
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError

from MessagingApp.errors import Unauthenticated

logger = logging.getLogger(__name__)

User = get_user_model()


def decode_access_token(token: str) -> dict:
    if not token:
        raise Unauthenticated("Authentication token required.")
    try:
        payload = jwt.decode(
            token,
            settings.SIMPLE_JWT.get("SIGNING_KEY", settings.SECRET_KEY),
            algorithms=[settings.SIMPLE_JWT.get("ALGORITHM", "HS256")],
            options={"verify_aud": False},
        )
    except jwt.InvalidTokenError as exc:
        raise Unauthenticated(f"Invalid token: {exc}")

    # Refresh tokens share the signing key; only access tokens open a session
    token_type = payload.get("token_type")
    if token_type is not None and token_type != "access":
        raise Unauthenticated("Token is not an access token.")
    return payload


def resolve_principal(token: str) -> User:
    payload = decode_access_token(token)
    claim = settings.SIMPLE_JWT.get("USER_ID_CLAIM", "user_id")
    user_id = payload.get(claim) or payload.get("sub")
    if not user_id:
        raise Unauthenticated("Token carries no user id.")

    try:
        user = User.objects.get(pk=user_id)
    except (User.DoesNotExist, ValidationError, ValueError):
        raise Unauthenticated("User not found or inactive.")
    if not user.is_active:
        raise Unauthenticated("User not found or inactive.")
    return user
