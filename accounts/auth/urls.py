from django.urls import path
from .views import LoginView, RefreshCookieView, LogoutView, MeView

urlpatterns = [
    path("login/", LoginView.as_view(), name="auth_login"),
    path("refresh/", RefreshCookieView.as_view(), name="auth_refresh"),
    path("logout/", LogoutView.as_view(), name="auth_logout"),
    path("me/", MeView.as_view(), name="auth_me"),
]
