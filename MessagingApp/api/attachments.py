# MessagingApp/api/attachments.py
from __future__ import annotations

import logging

from django.core.files.storage import default_storage
from rest_framework import permissions, serializers, status
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from MessagingApp.models import AttachmentKind, attachment_upload_to
from MessagingApp.serializers import validated

logger = logging.getLogger(__name__)


def kind_for_mimetype(mime_type: str) -> str:
    mime_type = (mime_type or "").lower()
    if mime_type.startswith("audio/"):
        return AttachmentKind.VOICE
    if mime_type.startswith("image/"):
        return AttachmentKind.IMAGE
    return AttachmentKind.FILE


class AttachmentUploadSerializer(serializers.Serializer):
    file = serializers.FileField()
    duration_seconds = serializers.FloatField(required=False, allow_null=True, min_value=0)


class AttachmentUploadView(APIView):
    """
    POST /api/chat/attachments/  (multipart: file, duration_seconds?)
    Stores the blob and returns the descriptor to send with a file or voice message.
    """

    permission_classes = [permissions.IsAuthenticated]
    parser_classes = [MultiPartParser, FormParser]

    def post(self, request):
        data = validated(AttachmentUploadSerializer, request.data)
        upload = data["file"]
        mime_type = getattr(upload, "content_type", "") or ""

        path = default_storage.save(attachment_upload_to(None, upload.name), upload)
        logger.info("attachment stored at %s by %s (%d bytes)", path, request.user.id, upload.size)

        return Response(
            {
                "type": kind_for_mimetype(mime_type).lower(),
                "file_name": upload.name,
                "storage_uri": default_storage.url(path),
                "byte_size": upload.size,
                "mime_type": mime_type,
                "duration_seconds": data.get("duration_seconds"),
            },
            status=status.HTTP_201_CREATED,
        )
