"""Serializers for chat conversations."""

from __future__ import annotations

from rest_framework import serializers

from chat.models import Conversation, Message, MessageAttachment, PinnedMessage
from chat.services import get_unread_count
from users.serializers import UserSummarySerializer


class MessageAttachmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = MessageAttachment
        fields = ["id", "filename", "url", "file_size", "mime_type", "uploaded_at"]
        read_only_fields = fields


class MessageSerializer(serializers.ModelSerializer):
    """Serialize a single chat message. Deleted messages hide their content."""

    content = serializers.SerializerMethodField()
    attachments = MessageAttachmentSerializer(many=True, read_only=True)
    read_by = serializers.SerializerMethodField()
    location = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = [
            "id",
            "conversation",
            "sender",
            "sender_role",
            "kind",
            "content",
            "attachments",
            "location",
            "is_read",
            "read_by",
            "is_edited",
            "edited_at",
            "is_deleted",
            "deleted_at",
            "timestamp",
        ]
        read_only_fields = fields

    def get_content(self, obj: Message) -> str:
        return "" if obj.is_deleted else obj.content

    def get_read_by(self, obj: Message) -> list[dict]:
        return [
            {"user_id": receipt.user_id, "read_at": receipt.read_at}
            for receipt in obj.read_receipts.all()
        ]

    def get_location(self, obj: Message) -> dict | None:
        return obj.location


class PinnedMessageSerializer(serializers.ModelSerializer):
    message = MessageSerializer(read_only=True)

    class Meta:
        model = PinnedMessage
        fields = ["id", "message", "pinned_by", "pinned_at"]
        read_only_fields = fields


class ConversationSerializer(serializers.ModelSerializer):
    """Summarize a conversation for list views."""

    participants = serializers.SerializerMethodField()
    participant_count = serializers.SerializerMethodField()
    last_message = serializers.SerializerMethodField()
    unread_count = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = [
            "id",
            "kind",
            "status",
            "subject",
            "booking",
            "participants",
            "participant_count",
            "last_message",
            "unread_count",
            "total_messages",
            "last_activity",
            "scheduled_close_date",
            "is_muted",
            "allow_file_uploads",
            "max_file_size",
            "is_moderated",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_participants(self, obj: Conversation) -> list[dict]:
        users = [participant.user for participant in obj.participants.all()]
        return UserSummarySerializer(users, many=True).data

    def get_participant_count(self, obj: Conversation) -> int:
        return len(obj.participants.all())

    def get_last_message(self, obj: Conversation) -> dict | None:
        return obj.last_message

    def get_unread_count(self, obj: Conversation) -> int:
        request = self.context.get("request")
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return 0
        return get_unread_count(obj, user)


class ConversationDetailSerializer(ConversationSerializer):
    """Full conversation payload including its message log and pins."""

    messages = serializers.SerializerMethodField()
    pinned_messages = PinnedMessageSerializer(many=True, read_only=True)

    class Meta(ConversationSerializer.Meta):
        fields = ConversationSerializer.Meta.fields + [
            "moderation_reason",
            "messages",
            "pinned_messages",
        ]
        read_only_fields = fields

    def get_messages(self, obj: Conversation) -> list[dict]:
        messages = obj.messages.select_related("sender").prefetch_related(
            "attachments", "read_receipts"
        )
        return MessageSerializer(messages, many=True, context=self.context).data


class AttachmentInputSerializer(serializers.Serializer):
    filename = serializers.CharField(max_length=255)
    url = serializers.URLField(max_length=1024)
    file_size = serializers.IntegerField(min_value=0)
    mime_type = serializers.CharField(max_length=120, required=False, allow_blank=True)


class LocationInputSerializer(serializers.Serializer):
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    address = serializers.CharField(max_length=255, required=False, allow_blank=True)


class SendMessageSerializer(serializers.Serializer):
    """Validate payload for sending a chat message."""

    content = serializers.CharField(max_length=1000, trim_whitespace=True)
    kind = serializers.ChoiceField(
        choices=Message.Kind.choices,
        default=Message.Kind.TEXT,
    )
    attachments = AttachmentInputSerializer(many=True, required=False)
    location = LocationInputSerializer(required=False)

    def validate_kind(self, value: str) -> str:
        if value == Message.Kind.SYSTEM:
            raise serializers.ValidationError("System messages cannot be sent by users.")
        return value


class EditMessageSerializer(serializers.Serializer):
    content = serializers.CharField(max_length=1000, trim_whitespace=True)


class StartConversationSerializer(serializers.Serializer):
    """Validate payload for find-or-create."""

    participant_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=False,
    )
    booking = serializers.IntegerField(required=False, allow_null=True)
    kind = serializers.ChoiceField(
        choices=Conversation.Kind.choices,
        required=False,
    )


class ModerateConversationSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000, allow_blank=True, required=False)
