"""Helpers shared by the async tests."""
import asyncio

from channels.layers import get_channel_layer
from rest_framework_simplejwt.tokens import AccessToken


def token_for(user) -> str:
    return str(AccessToken.for_user(user))


async def new_channel() -> str:
    return await get_channel_layer().new_channel()


async def drain(channel: str, wait: float = 0.1) -> list:
    """Every (event, payload) queued on ``channel`` until it stays quiet."""
    layer = get_channel_layer()
    events = []
    while True:
        try:
            message = await asyncio.wait_for(layer.receive(channel), wait)
        except asyncio.TimeoutError:
            return events
        events.append((message.get("event", message["type"]), message.get("payload")))


def of_type(events: list, name: str) -> list:
    return [payload for event, payload in events if event == name]


async def receive_until(communicator, event_type: str, timeout: float = 1) -> dict:
    """Reads frames from a WebsocketCommunicator until one of ``event_type`` arrives."""
    while True:
        frame = await communicator.receive_json_from(timeout=timeout)
        if frame["type"] == event_type:
            return frame["payload"]
