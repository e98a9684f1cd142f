from __future__ import annotations

from django.contrib.auth import get_user_model
from rest_framework import serializers

User = get_user_model()


class ProfileSerializer(serializers.ModelSerializer):
    """Profile details for the authenticated user."""

    avatar_url = serializers.CharField(read_only=True)
    display_name = serializers.CharField(read_only=True)

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "phone",
            "first_name",
            "last_name",
            "role",
            "display_name",
            "avatar",
            "avatar_url",
            "date_joined",
        ]
        read_only_fields = ("id", "username", "role", "date_joined")

    def validate_phone(self, value: str | None) -> str | None:
        cleaned = (value or "").strip()
        return cleaned or None


class UserSummarySerializer(serializers.ModelSerializer):
    """Compact representation embedded in chat and dispute payloads."""

    name = serializers.CharField(source="display_name", read_only=True)
    avatar_url = serializers.CharField(read_only=True)

    class Meta:
        model = User
        fields = ["id", "name", "role", "avatar_url"]
        read_only_fields = fields
