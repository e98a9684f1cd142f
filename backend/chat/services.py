"""Operations on the conversation aggregate.

Every function here that touches the message log finishes by re-deriving
the conversation's summary fields from the log inside the same transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone
from rest_framework import serializers
from rest_framework.exceptions import PermissionDenied

from core.exceptions import ConflictError, InvalidTransition
from core.redis import push_event_to_users

from .conf import ChatDefaults
from .models import (
    Conversation,
    ConversationParticipant,
    Message,
    MessageAttachment,
    MessageReadReceipt,
    PinnedMessage,
    UnreadCount,
    build_participant_key,
)

if TYPE_CHECKING:  # pragma: no cover
    from bookings.models import Booking
    from users.models import User

logger = logging.getLogger(__name__)

BOOKING_SUBJECT = "Booking Discussion"
GENERAL_SUBJECT = "General Chat"


@dataclass(frozen=True)
class LogSummary:
    last_message: Message | None
    total_messages: int


def summarize_messages(messages: Iterable[Message]) -> LogSummary:
    """Derive the summary of a message log, ignoring soft-deleted entries."""
    last: Message | None = None
    total = 0
    for message in messages:
        if message.is_deleted:
            continue
        total += 1
        if last is None or (message.timestamp, message.pk) >= (last.timestamp, last.pk):
            last = message
    return LogSummary(last_message=last, total_messages=total)


def _commit_log(conversation: Conversation, now: datetime) -> None:
    """Apply the derived summary to the conversation row and save it."""
    summary = summarize_messages(
        conversation.messages.filter(is_deleted=False).only(
            "id", "sender_id", "content", "timestamp", "is_deleted"
        )
    )
    last = summary.last_message
    conversation.last_message_sender_id = last.sender_id if last else None
    conversation.last_message_content = last.content if last else ""
    conversation.last_message_at = last.timestamp if last else None
    conversation.total_messages = summary.total_messages
    conversation.last_activity = now
    conversation.scheduled_close_date = now + timedelta(days=conversation.auto_close_after_days)
    conversation.save(
        update_fields=[
            "last_message_sender",
            "last_message_content",
            "last_message_at",
            "total_messages",
            "last_activity",
            "scheduled_close_date",
            "updated_at",
        ]
    )


def _role_for(user: "User") -> str:
    if user.is_platform_admin:
        return ConversationParticipant.Role.ADMIN
    return user.role


def _clean_content(content: str | None, defaults: ChatDefaults) -> str:
    cleaned = (content or "").strip()
    if not cleaned:
        raise serializers.ValidationError({"content": ["Message cannot be empty."]})
    if len(cleaned) > defaults.message_max_length:
        raise serializers.ValidationError(
            {
                "content": [
                    f"Message cannot be longer than {defaults.message_max_length} characters."
                ]
            }
        )
    return cleaned


def find_or_create_conversation(
    users: Sequence["User"],
    booking: "Booking | None" = None,
    kind: str = Conversation.Kind.BOOKING,
    *,
    defaults: ChatDefaults | None = None,
) -> Conversation:
    """
    Return the active or closed conversation for exactly this set of users,
    creating it on first access.

    When a booking is given the match is also scoped to that booking.
    Repeated calls for the same pairing return the same conversation.
    """
    unique_users = list({user.id: user for user in users}.values())
    if len(unique_users) < 2:
        raise serializers.ValidationError(
            {"participants": ["A conversation needs at least two participants."]}
        )

    key = build_participant_key(user.id for user in unique_users)
    existing_qs = Conversation.objects.reusable().filter(participant_key=key)
    if booking is not None:
        existing_qs = existing_qs.filter(booking=booking)

    existing = existing_qs.order_by("-created_at").first()
    if existing:
        return existing

    defaults = defaults or ChatDefaults.from_settings()
    now = timezone.now()
    try:
        with transaction.atomic():
            conversation = Conversation.objects.create(
                participant_key=key,
                booking=booking,
                kind=kind,
                subject=BOOKING_SUBJECT if kind == Conversation.Kind.BOOKING else GENERAL_SUBJECT,
                allow_file_uploads=defaults.allow_file_uploads,
                max_file_size=defaults.max_file_size,
                auto_close_after_days=defaults.auto_close_after_days,
                total_participants=len(unique_users),
                last_activity=now,
                scheduled_close_date=now + timedelta(days=defaults.auto_close_after_days),
                created_at=now,
            )
            ConversationParticipant.objects.bulk_create(
                [
                    ConversationParticipant(
                        conversation=conversation,
                        user=user,
                        role=_role_for(user),
                        joined_at=now,
                    )
                    for user in unique_users
                ]
            )
    except IntegrityError:
        # Lost a create race against an identical request; hand back the winner.
        existing = existing_qs.order_by("-created_at").first()
        if existing is None:
            raise
        return existing

    logger.info(
        "chat: created conversation %s",
        conversation.id,
        extra={"kind": kind, "booking_id": getattr(booking, "id", None)},
    )
    return conversation


def _validate_attachments(
    conversation: Conversation, attachments: Sequence[Mapping[str, Any]] | None
) -> list[MessageAttachment]:
    if not attachments:
        return []
    if not conversation.allow_file_uploads:
        raise serializers.ValidationError(
            {"attachments": ["File uploads are disabled for this conversation."]}
        )
    built = []
    for item in attachments:
        size = int(item.get("file_size") or 0)
        if size > conversation.max_file_size:
            raise serializers.ValidationError(
                {
                    "attachments": [
                        f"File too large. Max allowed is {conversation.max_file_size} bytes."
                    ]
                }
            )
        built.append(
            MessageAttachment(
                filename=item.get("filename") or "upload",
                url=item["url"],
                file_size=size,
                mime_type=item.get("mime_type") or "",
            )
        )
    return built


def _increment_unread(conversation: Conversation, user_id: int) -> None:
    counter, created = UnreadCount.objects.get_or_create(
        conversation=conversation,
        user_id=user_id,
        defaults={"count": 1},
    )
    if not created:
        UnreadCount.objects.filter(pk=counter.pk).update(count=F("count") + 1)


def _push_new_message_event(conversation: Conversation, msg: Message, recipients: set[int]) -> None:
    payload = {
        "conversation_id": conversation.id,
        "booking_id": conversation.booking_id,
        "message": {
            "id": msg.id,
            "sender_id": msg.sender_id,
            "sender_role": msg.sender_role,
            "kind": msg.kind,
            "content": msg.content,
            "timestamp": msg.timestamp.isoformat(),
        },
    }
    push_event_to_users(recipients, "chat:new_message", payload)


def add_message(
    conversation: Conversation,
    sender: "User",
    content: str,
    *,
    role: str | None = None,
    kind: str = Message.Kind.TEXT,
    attachments: Sequence[Mapping[str, Any]] | None = None,
    location: Mapping[str, Any] | None = None,
    defaults: ChatDefaults | None = None,
) -> Message:
    """Append a message and bump every other participant's unread counter."""
    defaults = defaults or ChatDefaults.from_settings()
    cleaned = _clean_content(content, defaults)

    if kind == Message.Kind.LOCATION and not location:
        raise serializers.ValidationError({"location": ["Location messages need coordinates."]})

    with transaction.atomic():
        conv = Conversation.objects.select_for_update().get(pk=conversation.pk)
        participants = list(conv.participants.all())
        sender_participant = next((p for p in participants if p.user_id == sender.id), None)
        if sender_participant is None:
            raise PermissionDenied("Only participants can post to this conversation.")

        attachment_rows = _validate_attachments(conv, attachments)
        now = timezone.now()
        msg = Message.objects.create(
            conversation=conv,
            sender=sender,
            sender_role=role or sender_participant.role,
            content=cleaned,
            kind=kind,
            location_latitude=location.get("latitude") if location else None,
            location_longitude=location.get("longitude") if location else None,
            location_address=(location.get("address") or "") if location else "",
            timestamp=now,
        )
        for row in attachment_rows:
            row.message = msg
        if attachment_rows:
            MessageAttachment.objects.bulk_create(attachment_rows)

        recipients = {p.user_id for p in participants if p.user_id != sender.id}
        for user_id in recipients:
            _increment_unread(conv, user_id)

        _commit_log(conv, now)
        transaction.on_commit(lambda: _push_new_message_event(conv, msg, recipients))

    conversation.refresh_from_db()
    return msg


def mark_as_read(conversation: Conversation, user: "User") -> int:
    """
    Zero the user's unread counter and record read receipts for every message
    they have not read yet. Returns the number of messages newly marked read.
    """
    if not conversation.has_participant(user):
        return 0

    with transaction.atomic():
        now = timezone.now()
        UnreadCount.objects.filter(conversation=conversation, user=user).update(count=0)

        pending_ids = list(
            conversation.messages.filter(is_deleted=False)
            .exclude(sender=user)
            .exclude(read_receipts__user=user)
            .values_list("id", flat=True)
        )
        if pending_ids:
            MessageReadReceipt.objects.bulk_create(
                [
                    MessageReadReceipt(message_id=message_id, user=user, read_at=now)
                    for message_id in pending_ids
                ],
                ignore_conflicts=True,
            )
            Message.objects.filter(id__in=pending_ids).update(is_read=True)
        Conversation.objects.filter(pk=conversation.pk).update(updated_at=now)

    return len(pending_ids)


def get_unread_count(conversation: Conversation, user: "User") -> int:
    """Return unread message count for the user in the conversation."""
    cache = getattr(conversation, "_unread_by_user", None)
    if cache is not None:
        return cache.get(getattr(user, "id", None), 0)
    count = (
        UnreadCount.objects.filter(conversation=conversation, user=user)
        .values_list("count", flat=True)
        .first()
    )
    return count or 0


def edit_message(message: Message, editor: "User", content: str) -> Message:
    """Replace a message's content, keeping the first original for audit."""
    cleaned = _clean_content(content, ChatDefaults.from_settings())
    with transaction.atomic():
        msg = Message.objects.select_for_update().select_related("conversation").get(pk=message.pk)
        if msg.sender_id != editor.id:
            raise PermissionDenied("Only the sender can edit this message.")
        if msg.is_deleted:
            raise ConflictError("Deleted messages cannot be edited.")
        if cleaned == msg.content:
            return msg

        now = timezone.now()
        if not msg.is_edited:
            msg.original_content = msg.content
        msg.content = cleaned
        msg.is_edited = True
        msg.edited_at = now
        msg.save(update_fields=["content", "original_content", "is_edited", "edited_at"])
        _commit_log(msg.conversation, now)
    return msg


def delete_message(message: Message, actor: "User") -> Message:
    """
    Soft-delete a message. The content stays stored; unread counters of
    participants who had not read it yet are decremented.
    """
    with transaction.atomic():
        msg = Message.objects.select_for_update().select_related("conversation").get(pk=message.pk)
        if msg.is_deleted:
            return msg
        if msg.sender_id != actor.id and not actor.is_platform_admin:
            raise PermissionDenied("Only the sender or an admin can delete this message.")

        conv = msg.conversation
        now = timezone.now()
        msg.is_deleted = True
        msg.deleted_at = now
        msg.deleted_by = actor
        msg.save(update_fields=["is_deleted", "deleted_at", "deleted_by"])

        readers = set(msg.read_receipts.values_list("user_id", flat=True))
        unread_for = (
            conv.participants.exclude(user_id=msg.sender_id)
            .exclude(user_id__in=readers)
            .values_list("user_id", flat=True)
        )
        UnreadCount.objects.filter(
            conversation=conv,
            user_id__in=list(unread_for),
            count__gt=0,
        ).update(count=F("count") - 1)
        PinnedMessage.objects.filter(message=msg).delete()

        _commit_log(conv, now)
    return msg


def pin_message(conversation: Conversation, message: Message, user: "User") -> PinnedMessage:
    if not conversation.has_participant(user) and not user.is_platform_admin:
        raise PermissionDenied("Only participants can pin messages.")
    if message.conversation_id != conversation.id:
        raise serializers.ValidationError({"message": ["Message is not part of this conversation."]})
    if message.is_deleted:
        raise ConflictError("Deleted messages cannot be pinned.")
    pin, _ = PinnedMessage.objects.get_or_create(
        conversation=conversation,
        message=message,
        defaults={"pinned_by": user},
    )
    return pin


def unpin_message(conversation: Conversation, message: Message, user: "User") -> bool:
    if not conversation.has_participant(user) and not user.is_platform_admin:
        raise PermissionDenied("Only participants can unpin messages.")
    deleted, _ = PinnedMessage.objects.filter(conversation=conversation, message=message).delete()
    return bool(deleted)


def moderate_conversation(conversation: Conversation, moderator: "User", reason: str) -> Conversation:
    """Flag a conversation as moderated by a platform admin."""
    if not moderator.is_platform_admin:
        raise PermissionDenied("Only admins can moderate conversations.")
    conversation.is_moderated = True
    conversation.moderated_by = moderator
    conversation.moderated_at = timezone.now()
    conversation.moderation_reason = (reason or "").strip()
    conversation.save(
        update_fields=[
            "is_moderated",
            "moderated_by",
            "moderated_at",
            "moderation_reason",
            "updated_at",
        ]
    )
    logger.info(
        "chat: conversation %s moderated",
        conversation.id,
        extra={"moderator_id": moderator.id},
    )
    return conversation


_STATUS_TRANSITIONS = {
    Conversation.Status.ACTIVE: {Conversation.Status.CLOSED, Conversation.Status.ARCHIVED},
    Conversation.Status.CLOSED: {Conversation.Status.ACTIVE, Conversation.Status.ARCHIVED},
    Conversation.Status.ARCHIVED: set(),
}


def _set_status(conversation: Conversation, actor: "User | None", new_status: str) -> Conversation:
    if actor is not None and not conversation.has_participant(actor) and not actor.is_platform_admin:
        raise PermissionDenied("Only participants can change this conversation.")
    with transaction.atomic():
        conv = Conversation.objects.select_for_update().get(pk=conversation.pk)
        if new_status not in _STATUS_TRANSITIONS.get(conv.status, set()):
            raise InvalidTransition(conv.status, new_status)
        conv.status = new_status
        try:
            with transaction.atomic():
                conv.save(update_fields=["status", "updated_at"])
        except IntegrityError as exc:
            raise ConflictError(
                "Another open conversation already exists for these participants."
            ) from exc
    conversation.refresh_from_db()
    return conversation


def close_conversation(conversation: Conversation, actor: "User | None") -> Conversation:
    return _set_status(conversation, actor, Conversation.Status.CLOSED)


def reopen_conversation(conversation: Conversation, actor: "User | None") -> Conversation:
    return _set_status(conversation, actor, Conversation.Status.ACTIVE)


def archive_conversation(conversation: Conversation, actor: "User | None") -> Conversation:
    """Archive a conversation. Conversations are never hard-deleted."""
    return _set_status(conversation, actor, Conversation.Status.ARCHIVED)


def user_chats(user: "User", *, kind: str | None = None, status: str = Conversation.Status.ACTIVE):
    qs = Conversation.objects.for_user(user).filter(status=status)
    if kind:
        qs = qs.filter(kind=kind)
    return qs.most_recent_first()


def find_user_chats(
    user: "User",
    *,
    kind: str | None = None,
    status: str = Conversation.Status.ACTIVE,
    limit: int = 20,
    skip: int = 0,
):
    """Return a page of the user's conversations, most recently active first."""
    return user_chats(user, kind=kind, status=status)[skip : skip + limit]
