from rest_framework.permissions import BasePermission

from MessagingApp.models import Participant


class IsConversationParticipant(BasePermission):
    """
    Allows access only to active participants of the conversation.
    Needs 'conversation_id' in the view kwargs. Unknown conversations pass
    through so the view answers 404.
    """
    message = "You are not a participant of this conversation."

    def has_permission(self, request, view):
        conversation_id = view.kwargs.get("conversation_id")
        if not conversation_id or not request.user or not request.user.is_authenticated:
            return False
        members = Participant.objects.filter(conversation_id=conversation_id)
        if not members.exists():
            return True
        return members.filter(user=request.user, is_active=True).exists()
