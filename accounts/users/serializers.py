# accounts/users/serializers.py
from django.contrib.auth import get_user_model
from rest_framework import serializers

User = get_user_model()


def initials_for(name: str) -> str:
    parts = [p for p in name.split() if p]
    if not parts:
        return "?"
    if len(parts) == 1:
        return parts[0][:2].upper()
    return (parts[0][0] + parts[-1][0]).upper()


class UserMiniSerializer(serializers.ModelSerializer):
    """Participant display info embedded in conversations and messages."""
    display = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ("id", "email", "first_name", "last_name", "display", "avatar", "role")

    def get_display(self, obj):
        return obj.get_display_name()


class UserListSerializer(serializers.ModelSerializer):
    full_name = serializers.SerializerMethodField()
    initials = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "first_name",
            "last_name",
            "display_name",
            "avatar",
            "role",
            "full_name",
            "initials",
            "last_seen",
            "status_message",
        ]

    def get_full_name(self, obj):
        return obj.get_display_name()

    def get_initials(self, obj):
        return initials_for(obj.get_display_name())


class UserSuggestSerializer(serializers.ModelSerializer):
    title = serializers.SerializerMethodField()
    subtitle = serializers.SerializerMethodField()
    initials = serializers.SerializerMethodField()
    online = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ["id", "title", "subtitle", "avatar", "role", "initials", "online", "last_seen", "status_message"]

    def get_title(self, obj):
        return obj.get_display_name()

    def get_subtitle(self, obj):
        return obj.email

    def get_initials(self, obj):
        return initials_for(obj.get_display_name())

    def get_online(self, obj):
        online_ids = self.context.get("online_ids") or set()
        return str(obj.id) in online_ids
