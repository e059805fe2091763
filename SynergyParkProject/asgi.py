# SynergyParkProject/asgi.py
import os
from django.core.asgi import get_asgi_application
from channels.routing import ProtocolTypeRouter, URLRouter
from channels.security.websocket import AllowedHostsOriginValidator

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "SynergyParkProject.settings")

django_asgi_app = get_asgi_application()

# ── WebSocket routing (needs the app registry loaded above)
from MessagingApp.routing import websocket_urlpatterns  # noqa: E402
from accounts.auth.ws_jwt import JWTAuthMiddleware  # noqa: E402

application = ProtocolTypeRouter({
    "http": django_asgi_app,
    "websocket": AllowedHostsOriginValidator(
        JWTAuthMiddleware(
            URLRouter(websocket_urlpatterns)
        )
    ),
})
