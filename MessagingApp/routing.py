# MessagingApp/routing.py
from django.urls import path

from MessagingApp.consumers import ChatConsumer

websocket_urlpatterns = [
    path("ws/chat/", ChatConsumer.as_asgi()),
]
