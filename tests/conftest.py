"""Shared fixtures: users, tokens, stores and a clean connection router per test."""
import itertools

import pytest
from rest_framework.test import APIClient

from accounts.models import User, UserRole
from MessagingApp.drafts import MessageDraft, TextContent
from MessagingApp.presence import get_router
from MessagingApp.stores import ConversationStore, MessageStore
from support import token_for

_seq = itertools.count()


@pytest.fixture(autouse=True)
def router():
    get_router().reset()
    yield get_router()
    get_router().reset()


@pytest.fixture(autouse=True)
def messaging_settings(settings, tmp_path):
    settings.MEDIA_ROOT = tmp_path / "media"
    settings.PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]
    settings.MESSAGING = {**settings.MESSAGING, "TYPING_TIMEOUT_SECONDS": 0.2}
    return settings


# ── Users & auth ──────────────────────────────────────────────
@pytest.fixture
def make_user():
    def _make(first_name=None, role=UserRole.STARTUP, **extra):
        n = next(_seq)
        return User.objects.create_user(
            email=f"user{n}@synergypark.test",
            password="s3cret-pass",
            first_name=first_name or f"User{n}",
            role=role,
            **extra,
        )
    return _make


@pytest.fixture
def alice(make_user):
    return make_user("Alice")


@pytest.fixture
def bob(make_user):
    return make_user("Bob")


@pytest.fixture
def carol(make_user):
    return make_user("Carol")


@pytest.fixture
def staff(make_user):
    return make_user("Sam", role=UserRole.S2T)


@pytest.fixture
def client_for():
    def _client(user=None):
        client = APIClient()
        if user is not None:
            client.credentials(HTTP_AUTHORIZATION=f"Bearer {token_for(user)}")
        return client
    return _client


# ── Stores ────────────────────────────────────────────────────
@pytest.fixture
def conversations():
    return ConversationStore()


@pytest.fixture
def messages(conversations):
    return MessageStore(conversations)


@pytest.fixture
def direct(conversations, alice, bob):
    conversation, _ = conversations.get_or_create_direct(alice, bob.id)
    return conversation


@pytest.fixture
def post(conversations, messages):
    """Stores a text message the way the engine does (message + counters)."""
    def _post(conversation, sender, text="hello", **draft_kwargs):
        message, created = messages.create(conversation, sender, MessageDraft(TextContent(text), **draft_kwargs))
        if created:
            conversations.record_new_message(conversation.id, message)
        return message
    return _post

