from django.contrib.auth import authenticate, get_user_model
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

User = get_user_model()


class LoginSerializer(TokenObtainPairSerializer):
    """
    Email + password login.
    Inherits TokenObtainPairSerializer to issue access/refresh tokens.
    """
    username_field = User.EMAIL_FIELD if hasattr(User, "EMAIL_FIELD") else "email"

    def validate(self, attrs):
        email = attrs.get("email") or attrs.get("username")
        password = attrs.get("password")
        if not email or not password:
            raise serializers.ValidationError("Email and password are required.")

        user = authenticate(request=self.context.get("request"), email=email, password=password)
        if not user or not user.is_active:
            raise serializers.ValidationError("Invalid credentials or inactive user.")

        data = super().validate({"email": email, "password": password})
        data["user"] = {
            "id": str(user.id),
            "email": user.email,
            "display_name": user.get_display_name(),
            "role": user.role,
        }
        return data


class MeSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ("id", "email", "display_name", "first_name", "last_name", "avatar", "role", "status_message", "last_seen")
        read_only_fields = ("id", "email", "role", "last_seen")
