# MessagingApp/presence.py
"""
Process-wide connection router: who is online, on which channel, and who is
typing where.

The maps are shared by the event loop and by sync worker threads (REST views
reach the engine through ``async_to_sync``), so every access goes through one
lock. Only this module touches them.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from channels.layers import get_channel_layer

from MessagingApp.conf import messaging_setting

logger = logging.getLogger(__name__)

CHAT_EVENT = "chat.event"
SESSION_LOGOUT = "session.logout"


def _cancel_task(task: asyncio.Task) -> None:
    loop = task.get_loop()
    if loop.is_closed() or task.done():
        return
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is loop:
        task.cancel()
    else:
        loop.call_soon_threadsafe(task.cancel)


class ConnectionRouter:

    def __init__(self):
        self._lock = threading.Lock()
        self._channel_by_user: Dict[str, str] = {}
        self._user_by_channel: Dict[str, str] = {}
        self._status_by_user: Dict[str, str] = {}
        # conversation_id -> {user_id: (expiry task, participant ids)}
        self._typing: Dict[str, Dict[str, Tuple[asyncio.Task, Tuple[str, ...]]]] = {}

    # ── Connections ───────────────────────────────────────────────
    def register(self, user_id, channel_name: str) -> Optional[str]:
        """Binds the principal to this channel; returns the channel it replaced."""
        uid = str(user_id)
        with self._lock:
            previous = self._channel_by_user.get(uid)
            if previous is not None:
                self._user_by_channel.pop(previous, None)
            self._channel_by_user[uid] = channel_name
            self._user_by_channel[channel_name] = uid
            self._status_by_user[uid] = "online"
        if previous and previous != channel_name:
            logger.info("user %s reconnected; channel %s superseded", uid, previous)
        return previous

    def unregister(self, user_id, channel_name: str) -> bool:
        """
        Drops the binding if ``channel_name`` is still the principal's
        current channel. Returns True when the principal went offline.
        """
        uid = str(user_id)
        with self._lock:
            self._user_by_channel.pop(channel_name, None)
            if self._channel_by_user.get(uid) != channel_name:
                return False
            del self._channel_by_user[uid]
            self._status_by_user.pop(uid, None)
            return True

    def channel_for(self, user_id) -> Optional[str]:
        with self._lock:
            return self._channel_by_user.get(str(user_id))

    def user_for(self, channel_name: str) -> Optional[str]:
        with self._lock:
            return self._user_by_channel.get(channel_name)

    def is_online(self, user_id) -> bool:
        return self.channel_for(user_id) is not None

    def online_user_ids(self, candidates: Optional[Iterable] = None) -> List[str]:
        with self._lock:
            if candidates is None:
                return list(self._channel_by_user)
            return [str(c) for c in candidates if str(c) in self._channel_by_user]

    def set_status(self, user_id, status: str) -> None:
        with self._lock:
            if str(user_id) in self._channel_by_user:
                self._status_by_user[str(user_id)] = status

    def status_for(self, user_id) -> str:
        with self._lock:
            return self._status_by_user.get(str(user_id), "offline")

    # ── Delivery ──────────────────────────────────────────────────
    async def _send(self, channel_name: str, message: dict) -> None:
        await get_channel_layer().send(channel_name, message)

    async def emit_to_principal(self, user_id, event: str, payload: dict) -> bool:
        channel = self.channel_for(user_id)
        if channel is None:
            return False
        await self._send(channel, {"type": CHAT_EVENT, "event": event, "payload": payload})
        return True

    async def emit_to_conversation(self, conversation_id, participant_ids: Iterable, event: str, payload: dict, exclude=None) -> List[str]:
        """Pushes to every online participant; returns the ids reached."""
        skip = str(exclude) if exclude is not None else None
        reached = []
        for uid in participant_ids:
            uid = str(uid)
            if uid == skip:
                continue
            if await self.emit_to_principal(uid, event, payload):
                reached.append(uid)
        logger.debug("%s in %s reached %d participant(s)", event, conversation_id, len(reached))
        return reached

    async def broadcast(self, event: str, payload: dict, exclude=None) -> List[str]:
        skip = str(exclude) if exclude is not None else None
        with self._lock:
            targets = [(uid, ch) for uid, ch in self._channel_by_user.items() if uid != skip]
        for _, channel in targets:
            await self._send(channel, {"type": CHAT_EVENT, "event": event, "payload": payload})
        return [uid for uid, _ in targets]

    async def close_principal(self, user_id) -> bool:
        channel = self.channel_for(user_id)
        if channel is None:
            return False
        await self._send(channel, {"type": SESSION_LOGOUT})
        return True

    # ── Typing ────────────────────────────────────────────────────
    def typing_users(self, conversation_id) -> List[str]:
        with self._lock:
            return list(self._typing.get(str(conversation_id), {}))

    async def typing_start(self, conversation_id, user_id, participant_ids: Iterable) -> None:
        cid, uid = str(conversation_id), str(user_id)
        members = tuple(str(p) for p in participant_ids)
        task = asyncio.get_running_loop().create_task(self._expire(cid, uid))
        with self._lock:
            previous = self._typing.setdefault(cid, {}).get(uid)
            self._typing[cid][uid] = (task, members)
        if previous is not None:
            _cancel_task(previous[0])
        await self.emit_to_conversation(
            cid, members, "userTyping", {"userId": uid, "conversationId": cid, "isTyping": True}, exclude=uid
        )

    async def typing_stop(self, conversation_id, user_id) -> bool:
        """Broadcasts ``isTyping: false`` only if the principal was typing."""
        cid, uid = str(conversation_id), str(user_id)
        with self._lock:
            users = self._typing.get(cid, {})
            entry = users.pop(uid, None)
            if not users:
                self._typing.pop(cid, None)
        if entry is None:
            return False

        task, members = entry
        if task is not asyncio.current_task():
            _cancel_task(task)
        await self.emit_to_conversation(
            cid, members, "userTyping", {"userId": uid, "conversationId": cid, "isTyping": False}, exclude=uid
        )
        return True

    async def _expire(self, conversation_id: str, user_id: str) -> None:
        await asyncio.sleep(float(messaging_setting("TYPING_TIMEOUT_SECONDS")))
        await self.typing_stop(conversation_id, user_id)

    async def clear_user(self, user_id) -> None:
        uid = str(user_id)
        with self._lock:
            conversations = [cid for cid, users in self._typing.items() if uid in users]
        for cid in conversations:
            await self.typing_stop(cid, uid)

    # ── Lifecycle ─────────────────────────────────────────────────
    def reset(self) -> None:
        with self._lock:
            tasks = [task for users in self._typing.values() for task, _ in users.values()]
            self._channel_by_user.clear()
            self._user_by_channel.clear()
            self._status_by_user.clear()
            self._typing.clear()
        for task in tasks:
            _cancel_task(task)


_router = ConnectionRouter()


def get_router() -> ConnectionRouter:
    return _router
