# MessagingApp/drafts.py
"""
Message drafts as a tagged union: one content class per message type.

Each content class validates itself when constructed, so a ``MessageDraft``
that exists is always well-formed. Client payloads are parsed by
``draft_from_payload``; SYSTEM content is only ever built server-side.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional, Tuple, Union

from rest_framework import serializers

from MessagingApp.errors import InvalidArgument, flatten_detail
from MessagingApp.models import AttachmentKind, MessageType

MAX_TEXT_LENGTH = 5000
MAX_EMOJI_LENGTH = 32


@dataclass(frozen=True)
class AttachmentSpec:
    kind: str
    file_name: str
    storage_uri: str
    byte_size: int
    mime_type: str = ""
    duration_seconds: Optional[float] = None

    def __post_init__(self):
        if self.kind not in AttachmentKind.values:
            raise InvalidArgument(f"Unknown attachment type: {self.kind}")
        if not self.file_name or not self.storage_uri:
            raise InvalidArgument("Attachments need a file name and a storage URI.")
        if self.byte_size < 0:
            raise InvalidArgument("Attachment size cannot be negative.")


@dataclass(frozen=True)
class TextContent:
    type: ClassVar[str] = MessageType.TEXT
    text: str

    def __post_init__(self):
        text = (self.text or "").strip()
        if not text:
            raise InvalidArgument("Text messages cannot be empty.")
        if len(text) > MAX_TEXT_LENGTH:
            raise InvalidArgument(f"Text messages are limited to {MAX_TEXT_LENGTH} characters.")
        object.__setattr__(self, "text", text)

    @property
    def body(self) -> str:
        return self.text


@dataclass(frozen=True)
class EmojiContent:
    type: ClassVar[str] = MessageType.EMOJI
    emoji: str

    def __post_init__(self):
        emoji = (self.emoji or "").strip()
        if not emoji:
            raise InvalidArgument("Emoji messages need an emoji.")
        if len(emoji) > MAX_EMOJI_LENGTH:
            raise InvalidArgument("Emoji is too long.")
        object.__setattr__(self, "emoji", emoji)

    @property
    def body(self) -> str:
        return self.emoji


@dataclass(frozen=True)
class SystemContent:
    type: ClassVar[str] = MessageType.SYSTEM
    text: str

    def __post_init__(self):
        if not (self.text or "").strip():
            raise InvalidArgument("System messages cannot be empty.")

    @property
    def body(self) -> str:
        return self.text


@dataclass(frozen=True)
class FileContent:
    type: ClassVar[str] = MessageType.FILE
    attachments: Tuple[AttachmentSpec, ...]
    caption: str = ""

    def __post_init__(self):
        if not self.attachments:
            raise InvalidArgument("File messages need at least one attachment.")

    @property
    def body(self) -> str:
        return (self.caption or "").strip()


@dataclass(frozen=True)
class VoiceContent:
    type: ClassVar[str] = MessageType.VOICE
    attachments: Tuple[AttachmentSpec, ...]
    caption: str = ""

    def __post_init__(self):
        if not self.attachments:
            raise InvalidArgument("Voice messages need at least one attachment.")
        if not any(a.kind == AttachmentKind.VOICE for a in self.attachments):
            raise InvalidArgument("Voice messages need a voice attachment.")

    @property
    def body(self) -> str:
        return (self.caption or "").strip()


Content = Union[TextContent, EmojiContent, SystemContent, FileContent, VoiceContent]


@dataclass(frozen=True)
class MessageDraft:
    content: Content
    reply_to: Optional[int] = None
    client_id: Optional[str] = None

    @property
    def type(self) -> str:
        return self.content.type

    @property
    def body(self) -> str:
        return self.content.body

    @property
    def attachments(self) -> Tuple[AttachmentSpec, ...]:
        return getattr(self.content, "attachments", ())


def system_draft(text: str) -> MessageDraft:
    return MessageDraft(content=SystemContent(text=text))


# ─────────────────────────────────────────────────────────
# Client payload parsing
# ─────────────────────────────────────────────────────────
class AttachmentInputSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=[k.lower() for k in AttachmentKind.values] + list(AttachmentKind.values))
    file_name = serializers.CharField(max_length=255)
    storage_uri = serializers.CharField(max_length=500)
    byte_size = serializers.IntegerField(min_value=0)
    mime_type = serializers.CharField(max_length=120, required=False, allow_blank=True, default="")
    duration_seconds = serializers.FloatField(required=False, allow_null=True, min_value=0)


class MessageDraftSerializer(serializers.Serializer):
    """
    Body of a send: {type, content, reply_to?, attachments?, client_id?}.
    ``content`` is a string (text/emoji, or caption for file/voice) or an
    object {text|emoji}.
    """
    type = serializers.CharField(required=False, default=MessageType.TEXT)
    content = serializers.JSONField(required=False, allow_null=True)
    reply_to = serializers.IntegerField(required=False, allow_null=True)
    attachments = AttachmentInputSerializer(many=True, required=False)
    client_id = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)

    def validate_type(self, value):
        value = (value or "").upper()
        if value not in MessageType.values:
            raise serializers.ValidationError(f"Unknown message type: {value.lower()}")
        if value == MessageType.SYSTEM:
            raise serializers.ValidationError("System messages cannot be sent by clients.")
        return value


def _content_text(content, key: str) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        value = content.get(key)
        if value is None and key != "text":
            value = content.get("text")
        return value if isinstance(value, str) else ""
    raise InvalidArgument("content must be a string or an object.")


def draft_from_payload(data) -> MessageDraft:
    serializer = MessageDraftSerializer(data=data)
    if not serializer.is_valid():
        raise InvalidArgument(flatten_detail(serializer.errors))
    v = serializer.validated_data

    msg_type = v["type"]
    content = v.get("content")
    attachments = tuple(
        AttachmentSpec(
            kind=a["type"].upper(),
            file_name=a["file_name"],
            storage_uri=a["storage_uri"],
            byte_size=a["byte_size"],
            mime_type=a.get("mime_type") or "",
            duration_seconds=a.get("duration_seconds"),
        )
        for a in v.get("attachments") or []
    )

    if msg_type == MessageType.TEXT:
        if attachments:
            raise InvalidArgument("Text messages cannot carry attachments.")
        body = TextContent(text=_content_text(content, "text"))
    elif msg_type == MessageType.EMOJI:
        body = EmojiContent(emoji=_content_text(content, "emoji"))
    elif msg_type == MessageType.FILE:
        body = FileContent(attachments=attachments, caption=_content_text(content, "text"))
    else:
        body = VoiceContent(attachments=attachments, caption=_content_text(content, "text"))

    return MessageDraft(
        content=body,
        reply_to=v.get("reply_to"),
        client_id=(v.get("client_id") or None),
    )
