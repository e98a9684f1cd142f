"""Chat API views."""

from __future__ import annotations

from django.contrib.auth import get_user_model
from django.db.models import prefetch_related_objects
from django.shortcuts import get_object_or_404
from rest_framework import serializers, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from bookings.models import Booking
from chat import services
from chat.models import Conversation, Message, UnreadCount
from chat.serializers import (
    ConversationDetailSerializer,
    ConversationSerializer,
    EditMessageSerializer,
    MessageSerializer,
    ModerateConversationSerializer,
    SendMessageSerializer,
    StartConversationSerializer,
)
from core.pagination import FixItNowPagination
from core.responses import ok

User = get_user_model()


def _get_user_conversation_or_404(user, pk: int) -> Conversation:
    """Restrict conversation access to participants and platform admins."""
    qs = Conversation.objects.prefetch_related("participants__user")
    if not user.is_platform_admin:
        qs = qs.for_user(user)
    return get_object_or_404(qs, pk=pk)


def _get_message_or_404(conversation: Conversation, message_id: int) -> Message:
    return get_object_or_404(Message, pk=message_id, conversation=conversation)


def _choice_param(request, name: str, choices, default=None):
    value = request.query_params.get(name) or default
    if value is not None and value not in choices:
        raise serializers.ValidationError({name: [f"'{value}' is not a valid choice."]})
    return value


def _attach_unread_counts(chats: list[Conversation], user) -> None:
    counts = dict(
        UnreadCount.objects.filter(conversation__in=chats, user=user).values_list(
            "conversation_id", "count"
        )
    )
    for conv in chats:
        conv._unread_by_user = {user.id: counts.get(conv.id, 0)}


def _list_chats(request) -> Response:
    kind = _choice_param(request, "kind", Conversation.Kind.values)
    chat_status = _choice_param(
        request, "status", Conversation.Status.values, default=Conversation.Status.ACTIVE
    )
    paginator = FixItNowPagination()
    chats = paginator.paginate_queryset(
        services.user_chats(request.user, kind=kind, status=chat_status), request
    )
    prefetch_related_objects(chats, "participants__user")
    _attach_unread_counts(chats, request.user)

    serializer = ConversationSerializer(chats, many=True, context={"request": request})
    return paginator.get_paginated_response(serializer.data, key="chats")


def _start_chat(request) -> Response:
    serializer = StartConversationSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    wanted_ids = set(data["participant_ids"]) | {request.user.id}
    users = list(User.objects.filter(id__in=wanted_ids, is_active=True))
    missing = wanted_ids - {user.id for user in users}
    if missing:
        raise serializers.ValidationError(
            {"participant_ids": [f"Unknown users: {sorted(missing)}"]}
        )

    booking = None
    if data.get("booking"):
        booking = get_object_or_404(Booking, pk=data["booking"])
        if not booking.is_party(request.user) and not request.user.is_platform_admin:
            raise PermissionDenied("You are not a party to this booking.")

    kind = data.get("kind") or (
        Conversation.Kind.BOOKING if booking is not None else Conversation.Kind.GENERAL
    )
    conv = services.find_or_create_conversation(users, booking=booking, kind=kind)
    conv = _get_user_conversation_or_404(request.user, conv.pk)
    return ok(ConversationSerializer(conv, context={"request": request}).data)


@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
def chat_list(request):
    """List the caller's conversations, or find-or-create one."""
    if request.method == "POST":
        return _start_chat(request)
    return _list_chats(request)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def chat_detail(request, pk: int):
    """Return the full conversation history."""
    conv = _get_user_conversation_or_404(request.user, pk)
    serializer = ConversationDetailSerializer(conv, context={"request": request})
    return ok(serializer.data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def chat_send_message(request, pk: int):
    """Append a user-authored message to the conversation."""
    conv = _get_user_conversation_or_404(request.user, pk)
    if conv.status != Conversation.Status.ACTIVE:
        return Response(
            {"success": False, "detail": "Chat is closed."},
            status=status.HTTP_400_BAD_REQUEST,
        )

    serializer = SendMessageSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    msg = services.add_message(
        conv,
        request.user,
        data["content"],
        kind=data["kind"],
        attachments=data.get("attachments"),
        location=data.get("location"),
    )
    return ok(
        MessageSerializer(msg, context={"request": request}).data,
        status=status.HTTP_201_CREATED,
    )


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def chat_mark_read(request, pk: int):
    conv = _get_user_conversation_or_404(request.user, pk)
    marked = services.mark_as_read(conv, request.user)
    return ok(
        {
            "marked_read": marked,
            "unread_count": services.get_unread_count(conv, request.user),
        }
    )


@api_view(["PATCH", "DELETE"])
@permission_classes([IsAuthenticated])
def chat_message_detail(request, pk: int, message_id: int):
    """Edit or soft-delete a single message."""
    conv = _get_user_conversation_or_404(request.user, pk)
    msg = _get_message_or_404(conv, message_id)

    if request.method == "DELETE":
        msg = services.delete_message(msg, request.user)
        return ok(MessageSerializer(msg, context={"request": request}).data)

    serializer = EditMessageSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    msg = services.edit_message(msg, request.user, serializer.validated_data["content"])
    return ok(MessageSerializer(msg, context={"request": request}).data)


@api_view(["POST", "DELETE"])
@permission_classes([IsAuthenticated])
def chat_message_pin(request, pk: int, message_id: int):
    conv = _get_user_conversation_or_404(request.user, pk)
    msg = _get_message_or_404(conv, message_id)
    if request.method == "DELETE":
        removed = services.unpin_message(conv, msg, request.user)
        return ok({"unpinned": removed})
    services.pin_message(conv, msg, request.user)
    return ok({"pinned": True, "message_id": msg.id}, status=status.HTTP_201_CREATED)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def chat_close(request, pk: int):
    conv = _get_user_conversation_or_404(request.user, pk)
    conv = services.close_conversation(conv, request.user)
    return ok(ConversationSerializer(conv, context={"request": request}).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def chat_reopen(request, pk: int):
    conv = _get_user_conversation_or_404(request.user, pk)
    conv = services.reopen_conversation(conv, request.user)
    return ok(ConversationSerializer(conv, context={"request": request}).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def chat_archive(request, pk: int):
    """Archive the conversation. Archived chats are kept but never reopened."""
    conv = _get_user_conversation_or_404(request.user, pk)
    conv = services.archive_conversation(conv, request.user)
    return ok(ConversationSerializer(conv, context={"request": request}).data)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def chat_moderate(request, pk: int):
    conv = _get_user_conversation_or_404(request.user, pk)
    serializer = ModerateConversationSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    conv = services.moderate_conversation(
        conv, request.user, serializer.validated_data.get("reason", "")
    )
    return ok(ConversationSerializer(conv, context={"request": request}).data)
