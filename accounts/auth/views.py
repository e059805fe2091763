import logging

from asgiref.sync import async_to_sync
from django.utils import timezone
from rest_framework import generics, permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import RefreshToken

from MessagingApp.engine import get_engine
from MessagingApp.errors import Unauthenticated
from .cookie_jwt import ACCESS_COOKIE_NAME
from .serializers import LoginSerializer, MeSerializer

logger = logging.getLogger(__name__)

# ------------ httpOnly cookie helpers ------------
REFRESH_COOKIE_NAME = "refresh_token"
ACCESS_COOKIE_MAX_AGE = 15 * 60
REFRESH_COOKIE_MAX_AGE = 7 * 24 * 60 * 60  # 7 days
COOKIE_FLAGS = {
    "httponly": True,
    "secure": False,
    "samesite": "Lax",
}


def set_auth_cookies(response, access, refresh=None):
    response.set_cookie(ACCESS_COOKIE_NAME, access, max_age=ACCESS_COOKIE_MAX_AGE, **COOKIE_FLAGS)
    if refresh:
        response.set_cookie(REFRESH_COOKIE_NAME, refresh, max_age=REFRESH_COOKIE_MAX_AGE, **COOKIE_FLAGS)


def clear_auth_cookies(response):
    response.delete_cookie(ACCESS_COOKIE_NAME)
    response.delete_cookie(REFRESH_COOKIE_NAME)


# ------------------- Login -------------------
class LoginView(generics.GenericAPIView):
    """
    POST /api/auth/login/  -> user + tokens (JSON and httpOnly cookies)
    """
    permission_classes = [permissions.AllowAny]
    authentication_classes = []
    serializer_class = LoginSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "login"

    def post(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        tokens = serializer.validated_data
        access = tokens["access"]
        refresh = tokens["refresh"]
        user_data = tokens["user"]

        serializer.user.last_seen = timezone.now()
        serializer.user.save(update_fields=["last_seen"])

        resp = Response(
            {"user": user_data, "access": access, "refresh": refresh},
            status=status.HTTP_200_OK,
        )
        set_auth_cookies(resp, access, refresh)
        return resp


# ------------------- Refresh -------------------
class RefreshCookieView(APIView):

    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def post(self, request):
        refresh_token = request.data.get("refresh") or request.COOKIES.get(REFRESH_COOKIE_NAME)
        if not refresh_token:
            raise Unauthenticated("No refresh token.")
        try:
            refresh = RefreshToken(refresh_token)
            access = str(refresh.access_token)
        except TokenError as exc:
            raise Unauthenticated(f"Invalid refresh token: {exc}")

        resp = Response({"access": access}, status=200)
        set_auth_cookies(resp, access, str(refresh))
        return resp


# ------------------- Logout (blacklist + live session) -------------------
class LogoutView(APIView):
    """
    Blacklists the refresh token, clears cookies and closes the caller's
    live connection (presence goes offline).
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        refresh_token = request.data.get("refresh") or request.COOKIES.get(REFRESH_COOKIE_NAME)
        if refresh_token:
            try:
                RefreshToken(refresh_token).blacklist()
            except TokenError as exc:
                logger.info("logout with unusable refresh token: %s", exc)

        async_to_sync(get_engine().logout)(request.user)

        resp = Response(status=204)
        clear_auth_cookies(resp)
        return resp


# ------------------- /me -------------------
class MeView(generics.RetrieveUpdateAPIView):
    serializer_class = MeSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_object(self):
        return self.request.user
