from __future__ import annotations

import logging

from celery import shared_task
from django.utils import timezone

from .models import Conversation
from .services import close_conversation

logger = logging.getLogger(__name__)


@shared_task(name="chat.auto_close_inactive_conversations")
def auto_close_inactive_conversations() -> int:
    """Close active conversations whose scheduled close date has passed."""
    now = timezone.now()
    due_ids = list(
        Conversation.objects.filter(
            status=Conversation.Status.ACTIVE,
            scheduled_close_date__lte=now,
        ).values_list("id", flat=True)
    )
    closed = 0
    for conversation_id in due_ids:
        try:
            conversation = Conversation.objects.get(pk=conversation_id)
            close_conversation(conversation, None)
        except Exception:
            logger.exception(
                "chat.auto_close_inactive_conversations: failed for conversation %s",
                conversation_id,
            )
            continue
        closed += 1

    if closed:
        logger.info(
            "chat: auto-closed %s inactive conversations",
            closed,
            extra={"checked": len(due_ids)},
        )
    return closed
