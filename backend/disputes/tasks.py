from __future__ import annotations

import logging

from celery import shared_task
from django.utils import timezone

from .models import Dispute
from .workflow import can_transition, escalate

logger = logging.getLogger(__name__)

OVERDUE_REASON = "Escalation deadline passed without resolution."


@shared_task(name="disputes.escalate_overdue_disputes")
def escalate_overdue_disputes() -> int:
    """Escalate open cases whose escalation deadline has passed."""
    now = timezone.now()
    candidates = list(
        Dispute.objects.active()
        .exclude(status=Dispute.Status.ESCALATED)
        .filter(escalation_deadline__isnull=False, escalation_deadline__lte=now)
    )
    escalated = 0
    for dispute in candidates:
        if not can_transition(dispute.status, Dispute.Status.ESCALATED):
            continue
        try:
            escalate(dispute, OVERDUE_REASON, None)
        except Exception:
            logger.exception(
                "disputes.escalate_overdue_disputes: failed for dispute %s", dispute.id
            )
            continue
        escalated += 1

    if escalated:
        logger.info(
            "disputes: escalated %s overdue disputes",
            escalated,
            extra={"checked": len(candidates)},
        )
    return escalated
