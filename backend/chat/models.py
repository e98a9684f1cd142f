"""Chat conversation models."""

from __future__ import annotations

from typing import Iterable

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone


def build_participant_key(user_ids: Iterable[int]) -> str:
    """Return the canonical key for a set of participant ids."""
    return "-".join(str(user_id) for user_id in sorted({int(uid) for uid in user_ids}))


class ConversationQuerySet(models.QuerySet):
    def for_user(self, user) -> "ConversationQuerySet":
        return self.filter(participants__user=user).distinct()

    def reusable(self) -> "ConversationQuerySet":
        """Conversations that find-or-create may hand back instead of a new thread."""
        return self.filter(
            status__in=[Conversation.Status.ACTIVE, Conversation.Status.CLOSED]
        )

    def most_recent_first(self) -> "ConversationQuerySet":
        return self.order_by(
            F("last_message_at").desc(nulls_last=True),
            "-created_at",
        )


class Conversation(models.Model):
    """A chat thread between two or more marketplace users."""

    class Kind(models.TextChoices):
        BOOKING = "booking", "booking"
        GENERAL = "general", "general"
        SUPPORT = "support", "support"
        DISPUTE = "dispute", "dispute"

    class Status(models.TextChoices):
        ACTIVE = "active", "active"
        CLOSED = "closed", "closed"
        ARCHIVED = "archived", "archived"

    participant_key = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Sorted participant user ids joined by '-'.",
    )
    booking = models.ForeignKey(
        "bookings.Booking",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="conversations",
    )
    kind = models.CharField(
        max_length=16,
        choices=Kind.choices,
        default=Kind.GENERAL,
    )
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.ACTIVE,
    )
    subject = models.CharField(max_length=200, blank=True)

    last_message_sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    last_message_content = models.TextField(blank=True, default="")
    last_message_at = models.DateTimeField(null=True, blank=True)

    is_muted = models.BooleanField(default=False)
    mute_notifications = models.BooleanField(default=False)
    allow_file_uploads = models.BooleanField(default=True)
    max_file_size = models.PositiveIntegerField(help_text="Attachment size limit in bytes.")

    is_moderated = models.BooleanField(default=False)
    moderated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="moderated_conversations",
    )
    moderated_at = models.DateTimeField(null=True, blank=True)
    moderation_reason = models.TextField(blank=True, default="")

    total_messages = models.PositiveIntegerField(default=0)
    total_participants = models.PositiveIntegerField(default=0)
    last_activity = models.DateTimeField(default=timezone.now)

    auto_close_after_days = models.PositiveIntegerField()
    scheduled_close_date = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ConversationQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "kind"], name="chat_conv_status_kind_idx"),
            models.Index(fields=["-last_message_at"], name="chat_conv_last_msg_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["participant_key", "booking"],
                condition=Q(status__in=["active", "closed"]),
                name="unique_open_conversation_per_participants_booking",
            ),
            models.UniqueConstraint(
                fields=["participant_key"],
                condition=Q(booking__isnull=True, status__in=["active", "closed"]),
                name="unique_open_conversation_per_participants_no_booking",
            ),
        ]

    def __str__(self) -> str:
        return f"Conversation(#{self.pk}, {self.kind}, {self.status})"

    @property
    def participant_count(self) -> int:
        return self.participants.count()

    @property
    def last_message(self) -> dict | None:
        if self.last_message_at is None:
            return None
        return {
            "sender_id": self.last_message_sender_id,
            "content": self.last_message_content,
            "timestamp": self.last_message_at,
        }

    def participant_ids(self) -> set[int]:
        return set(self.participants.values_list("user_id", flat=True))

    def has_participant(self, user) -> bool:
        user_id = getattr(user, "id", None)
        return user_id is not None and self.participants.filter(user_id=user_id).exists()


class ConversationParticipant(models.Model):
    class Role(models.TextChoices):
        CUSTOMER = "customer", "customer"
        TECHNICIAN = "technician", "technician"
        ADMIN = "admin", "admin"

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="participants",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_participations",
    )
    role = models.CharField(max_length=16, choices=Role.choices)
    joined_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["joined_at", "id"]
        unique_together = ("conversation", "user")

    def __str__(self) -> str:  # pragma: no cover - simple repr
        return f"Participant(conv={self.conversation_id}, user={self.user_id})"


class Message(models.Model):
    """One entry in a conversation's append-only message log."""

    class Kind(models.TextChoices):
        TEXT = "text", "text"
        IMAGE = "image", "image"
        FILE = "file", "file"
        LOCATION = "location", "location"
        SYSTEM = "system", "system"

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="messages",
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_messages",
    )
    sender_role = models.CharField(max_length=16, choices=ConversationParticipant.Role.choices)
    content = models.TextField()
    kind = models.CharField(
        max_length=16,
        choices=Kind.choices,
        default=Kind.TEXT,
    )
    location_latitude = models.FloatField(null=True, blank=True)
    location_longitude = models.FloatField(null=True, blank=True)
    location_address = models.CharField(max_length=255, blank=True, default="")

    is_read = models.BooleanField(default=False)

    is_edited = models.BooleanField(default=False)
    edited_at = models.DateTimeField(null=True, blank=True)
    original_content = models.TextField(null=True, blank=True)

    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )

    timestamp = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["timestamp", "id"]
        indexes = [
            models.Index(fields=["conversation", "timestamp"], name="chat_msg_conv_ts_idx"),
        ]

    def __str__(self) -> str:
        return (
            "Message("
            f"conv={self.conversation_id}, "
            f"kind={self.kind}, "
            f"deleted={self.is_deleted}"
            ")"
        )

    @property
    def location(self) -> dict | None:
        if self.location_latitude is None or self.location_longitude is None:
            return None
        return {
            "latitude": self.location_latitude,
            "longitude": self.location_longitude,
            "address": self.location_address,
        }


class MessageAttachment(models.Model):
    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="attachments",
    )
    filename = models.CharField(max_length=255)
    url = models.URLField(max_length=1024)
    file_size = models.PositiveIntegerField()
    mime_type = models.CharField(max_length=120, blank=True)
    uploaded_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["id"]


class MessageReadReceipt(models.Model):
    """Record that a participant has read a message."""

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="read_receipts",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="message_read_receipts",
    )
    read_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["read_at", "id"]
        unique_together = ("message", "user")

    def __str__(self) -> str:  # pragma: no cover - simple repr
        return f"ReadReceipt(msg={self.message_id}, user={self.user_id})"


class UnreadCount(models.Model):
    """Per-participant unread counter, kept alongside the message log."""

    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="unread_counts",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_unread_counts",
    )
    count = models.PositiveIntegerField(default=0)

    class Meta:
        unique_together = ("conversation", "user")

    def __str__(self) -> str:  # pragma: no cover - simple repr
        return f"UnreadCount(conv={self.conversation_id}, user={self.user_id}, n={self.count})"


class PinnedMessage(models.Model):
    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name="pinned_messages",
    )
    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="pins",
    )
    pinned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    pinned_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-pinned_at"]
        unique_together = ("conversation", "message")
