"""
State machine and operations for dispute cases.

Each operation locks the dispute row, re-checks the transition against the
locked state and commits once, so concurrent callers are serialised by the
database and the loser sees the winner's status.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from rest_framework import serializers
from rest_framework.exceptions import PermissionDenied

from bookings.models import Booking
from core.exceptions import ConflictError, InvalidTransition
from core.redis import push_event_to_users

from .models import (
    Dispute,
    DisputeCommunication,
    DisputeEvidence,
    DisputeFollowUpAction,
    DisputeInternalNote,
)

if TYPE_CHECKING:  # pragma: no cover
    from users.models import User

logger = logging.getLogger(__name__)

S = Dispute.Status

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    S.OPEN: frozenset(
        {S.UNDER_REVIEW, S.INVESTIGATING, S.MEDIATION, S.ESCALATED, S.CANCELLED, S.RESOLVED}
    ),
    S.UNDER_REVIEW: frozenset(
        {S.INVESTIGATING, S.MEDIATION, S.ESCALATED, S.CANCELLED, S.RESOLVED}
    ),
    S.INVESTIGATING: frozenset({S.MEDIATION, S.ESCALATED, S.CANCELLED, S.RESOLVED}),
    S.MEDIATION: frozenset({S.ESCALATED, S.CANCELLED, S.RESOLVED}),
    S.ESCALATED: frozenset(
        {S.UNDER_REVIEW, S.INVESTIGATING, S.MEDIATION, S.CANCELLED, S.RESOLVED}
    ),
    S.RESOLVED: frozenset({S.CLOSED}),
    S.CLOSED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Statuses that carry extra data and must go through their own operation.
_DEDICATED_TRANSITIONS = {S.RESOLVED: "resolve"}


def can_transition(current: str, requested: str) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def _check_transition(dispute: Dispute, requested: str) -> None:
    if not can_transition(dispute.status, requested):
        raise InvalidTransition(dispute.status, requested)


def _lock(dispute: Dispute) -> Dispute:
    return Dispute.objects.select_for_update().get(pk=dispute.pk)


def _hours_setting(name: str, default: int) -> timedelta:
    return timedelta(hours=int(getattr(settings, name, default)))


def _notify_parties(dispute: Dispute, event_type: str, **payload: Any) -> None:
    data = {
        "dispute_id": dispute.dispute_id,
        "id": dispute.id,
        "booking_id": dispute.booking_id,
        "status": dispute.status,
        **payload,
    }
    user_ids = [dispute.customer_id, dispute.technician_id]
    transaction.on_commit(lambda: push_event_to_users(user_ids, event_type, data))


def _set_status(dispute: Dispute, new_status: str) -> None:
    previous = dispute.status
    dispute.status = new_status
    dispute.save()
    _notify_parties(dispute, "dispute:status_changed", previous_status=previous)


def _refresh(dispute: Dispute, locked: Dispute) -> Dispute:
    if dispute is not locked:
        dispute.refresh_from_db()
    return dispute


def file_dispute(
    *,
    booking: Booking,
    initiated_by: "User",
    category: str,
    title: str,
    description: str,
    requested_resolution_kind: str,
    requested_resolution_amount: Decimal | None = None,
    requested_resolution_description: str = "",
    priority: str = Dispute.Priority.MEDIUM,
    source: str = Dispute.Source.WEB,
    language: str = "en",
    tags: Iterable[str] | None = None,
) -> Dispute:
    """Open a dispute on ``booking`` on behalf of one of its parties."""
    if initiated_by.id == booking.customer_id:
        initiator_role = Dispute.InitiatorRole.CUSTOMER
    elif initiated_by.id == booking.technician_id:
        initiator_role = Dispute.InitiatorRole.TECHNICIAN
    else:
        raise PermissionDenied("You are not allowed to file disputes for this booking.")

    with transaction.atomic():
        locked_booking = Booking.objects.select_for_update().get(pk=booking.pk)
        if Dispute.objects.filter(booking=locked_booking).active().exists():
            raise ConflictError("An active dispute already exists for this booking.")

        now = timezone.now()
        dispute = Dispute.objects.create(
            booking=locked_booking,
            customer_id=locked_booking.customer_id,
            technician_id=locked_booking.technician_id,
            initiated_by=initiated_by,
            initiator_role=initiator_role,
            category=category,
            priority=priority,
            title=title.strip(),
            description=description.strip(),
            requested_resolution_kind=requested_resolution_kind,
            requested_resolution_amount=requested_resolution_amount,
            requested_resolution_description=requested_resolution_description or "",
            source=source,
            language=language or "en",
            tags=_normalize_tags(tags or []),
            deadline=now + _hours_setting("DISPUTE_RESPONSE_WINDOW_HOURS", 48),
            escalation_deadline=now + _hours_setting("DISPUTE_ESCALATION_WINDOW_HOURS", 168),
            created_at=now,
        )

        if locked_booking.status != Booking.Status.DISPUTED:
            locked_booking.status = Booking.Status.DISPUTED
            locked_booking.save(update_fields=["status", "updated_at"])

        _notify_parties(dispute, "dispute:filed", category=dispute.category)

    logger.info(
        "disputes: filed %s for booking %s",
        dispute.dispute_id,
        booking.id,
        extra={"category": category, "initiator_role": initiator_role},
    )
    return dispute


def transition_status(dispute: Dispute, new_status: str, *, actor: "User | None" = None) -> Dispute:
    """Move a dispute along the workflow table."""
    if new_status in _DEDICATED_TRANSITIONS:
        raise serializers.ValidationError(
            {"status": [f"Use the {_DEDICATED_TRANSITIONS[new_status]} action for this status."]}
        )
    with transaction.atomic():
        locked = _lock(dispute)
        _check_transition(locked, new_status)
        _set_status(locked, new_status)

    logger.info(
        "disputes: %s moved to %s",
        locked.dispute_id,
        new_status,
        extra={"actor_id": getattr(actor, "id", None)},
    )
    return _refresh(dispute, locked)


def add_communication(
    dispute: Dispute,
    kind: str,
    direction: str,
    participant: "User | None",
    summary: str,
    *,
    notes: str | None = None,
    attachments: Sequence[str] | None = None,
) -> DisputeCommunication:
    """Append an entry to the communication log. The status is left alone."""
    if kind not in DisputeCommunication.Kind.values:
        raise serializers.ValidationError({"kind": [f"'{kind}' is not a valid choice."]})
    if direction not in DisputeCommunication.Direction.values:
        raise serializers.ValidationError({"direction": [f"'{direction}' is not a valid choice."]})
    if not (summary or "").strip():
        raise serializers.ValidationError({"summary": ["This field may not be blank."]})

    with transaction.atomic():
        locked = _lock(dispute)
        entry = DisputeCommunication.objects.create(
            dispute=locked,
            kind=kind,
            direction=direction,
            participant=participant,
            summary=summary.strip(),
            notes=notes or "",
            attachments=list(attachments or []),
            timestamp=timezone.now(),
        )
        locked.save(update_fields=["updated_at"])
    return entry


def add_evidence(
    dispute: Dispute,
    uploaded_by: "User",
    *,
    kind: str,
    url: str,
    filename: str = "",
    description: str = "",
) -> DisputeEvidence:
    if not dispute.is_party(uploaded_by) and not uploaded_by.is_platform_admin:
        raise PermissionDenied("Only dispute parties can add evidence.")
    with transaction.atomic():
        locked = _lock(dispute)
        if locked.status in (S.CLOSED, S.CANCELLED):
            raise ConflictError("Evidence cannot be added to a closed dispute.")
        evidence = DisputeEvidence.objects.create(
            dispute=locked,
            uploaded_by=uploaded_by,
            kind=kind,
            url=url,
            filename=filename or "",
            description=description or "",
        )
        locked.save(update_fields=["updated_at"])
    return evidence


def add_internal_note(
    dispute: Dispute,
    note: str,
    added_by: "User | None",
    *,
    visible_to_customer: bool = False,
    visible_to_technician: bool = False,
) -> DisputeInternalNote:
    """Attach a note; ``added_by=None`` marks a system-generated note."""
    if not (note or "").strip():
        raise serializers.ValidationError({"note": ["This field may not be blank."]})
    return DisputeInternalNote.objects.create(
        dispute=dispute,
        note=note.strip(),
        added_by=added_by,
        visible_to_customer=visible_to_customer,
        visible_to_technician=visible_to_technician,
        added_at=timezone.now(),
    )


def notes_visible_to(dispute: Dispute, user: "User"):
    qs = dispute.internal_notes.all()
    if user.is_platform_admin:
        return qs
    if user.id == dispute.customer_id:
        return qs.filter(visible_to_customer=True)
    if user.id == dispute.technician_id:
        return qs.filter(visible_to_technician=True)
    return qs.none()


def assign_dispute(dispute: Dispute, assignee: "User", *, assigned_by: "User | None" = None) -> Dispute:
    """Give the case to a platform admin; an open case moves to under review."""
    if not assignee.is_platform_admin:
        raise serializers.ValidationError({"assigned_to": ["Disputes can only be assigned to admins."]})
    with transaction.atomic():
        locked = _lock(dispute)
        if locked.is_terminal():
            raise ConflictError("Closed disputes cannot be reassigned.")
        locked.assigned_to = assignee
        locked.assigned_at = timezone.now()
        if locked.status == S.OPEN:
            _set_status(locked, S.UNDER_REVIEW)
        else:
            locked.save()

    logger.info(
        "disputes: %s assigned to %s",
        locked.dispute_id,
        assignee.id,
        extra={"assigned_by": getattr(assigned_by, "id", None)},
    )
    return _refresh(dispute, locked)


def add_follow_up_action(
    dispute: Dispute,
    action: str,
    *,
    assigned_to: "User | None" = None,
    due_date=None,
    notes: str = "",
) -> DisputeFollowUpAction:
    if not (action or "").strip():
        raise serializers.ValidationError({"action": ["This field may not be blank."]})
    return DisputeFollowUpAction.objects.create(
        dispute=dispute,
        action=action.strip(),
        assigned_to=assigned_to,
        due_date=due_date,
        notes=notes or "",
    )


def complete_follow_up_action(
    follow_up: DisputeFollowUpAction, *, notes: str | None = None
) -> DisputeFollowUpAction:
    if follow_up.completed:
        return follow_up
    follow_up.completed = True
    follow_up.completed_at = timezone.now()
    update_fields = ["completed", "completed_at"]
    if notes:
        follow_up.notes = notes
        update_fields.append("notes")
    follow_up.save(update_fields=update_fields)
    return follow_up


def link_related_dispute(dispute: Dispute, other: Dispute) -> None:
    if dispute.pk == other.pk:
        raise serializers.ValidationError({"related": ["A dispute cannot be related to itself."]})
    dispute.related_disputes.add(other)


def _normalize_tags(tags: Iterable[str]) -> list[str]:
    cleaned = []
    for tag in tags:
        value = str(tag).strip().lower()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


def add_tags(dispute: Dispute, tags: Iterable[str]) -> list[str]:
    with transaction.atomic():
        locked = _lock(dispute)
        locked.tags = _normalize_tags([*(locked.tags or []), *tags])
        locked.save(update_fields=["tags", "updated_at"])
    _refresh(dispute, locked)
    return locked.tags


def _amount(value, field: str) -> Decimal | None:
    if value is None:
        return None
    amount = Decimal(str(value))
    if amount < 0:
        raise serializers.ValidationError({field: ["Amount cannot be negative."]})
    return amount


def resolve(
    dispute: Dispute,
    decision: str,
    explanation: str,
    resolved_by: "User",
    *,
    notes: str | None = None,
    final_amount=None,
    refund_amount=None,
    compensation=None,
) -> Dispute:
    """Record the decision and move the dispute to resolved."""
    if decision not in Dispute.Decision.values:
        raise serializers.ValidationError({"decision": [f"'{decision}' is not a valid choice."]})
    amounts = {
        "resolution_final_amount": _amount(final_amount, "final_amount"),
        "resolution_refund_amount": _amount(refund_amount, "refund_amount"),
        "resolution_compensation": _amount(compensation, "compensation"),
    }

    with transaction.atomic():
        locked = _lock(dispute)
        _check_transition(locked, S.RESOLVED)
        locked.resolution_decision = decision
        locked.resolution_explanation = explanation or ""
        locked.resolution_notes = notes or ""
        locked.resolved_by = resolved_by
        locked.resolved_at = timezone.now()
        for field, value in amounts.items():
            setattr(locked, field, value)
        _set_status(locked, S.RESOLVED)

    logger.info(
        "disputes: resolved %s",
        locked.dispute_id,
        extra={
            "decision": decision,
            "resolved_by": resolved_by.id,
            "refund_amount": str(locked.resolution_refund_amount or 0),
        },
    )
    return _refresh(dispute, locked)


def escalate(dispute: Dispute, reason: str, escalated_by: "User | None") -> Dispute:
    """Escalate and leave a staff-only note with the reason."""
    with transaction.atomic():
        locked = _lock(dispute)
        _check_transition(locked, S.ESCALATED)
        _set_status(locked, S.ESCALATED)
        add_internal_note(
            locked,
            f"Escalated: {reason}",
            escalated_by,
            visible_to_customer=False,
            visible_to_technician=False,
        )

    logger.info(
        "disputes: escalated %s",
        locked.dispute_id,
        extra={"escalated_by": getattr(escalated_by, "id", None)},
    )
    return _refresh(dispute, locked)


def close_dispute(dispute: Dispute, actor: "User | None" = None) -> Dispute:
    with transaction.atomic():
        locked = _lock(dispute)
        _check_transition(locked, S.CLOSED)
        _set_status(locked, S.CLOSED)

    logger.info(
        "disputes: closed %s",
        locked.dispute_id,
        extra={"actor_id": getattr(actor, "id", None)},
    )
    return _refresh(dispute, locked)


def cancel_dispute(dispute: Dispute, actor: "User", reason: str = "") -> Dispute:
    """Withdraw a dispute. Only the filer or an admin may cancel."""
    if actor.id != dispute.initiated_by_id and not actor.is_platform_admin:
        raise PermissionDenied("Only the filer or an admin can cancel this dispute.")
    with transaction.atomic():
        locked = _lock(dispute)
        _check_transition(locked, S.CANCELLED)
        _set_status(locked, S.CANCELLED)
        note = f"Cancelled: {reason.strip()}" if (reason or "").strip() else "Cancelled"
        add_internal_note(locked, note, actor)

    logger.info(
        "disputes: cancelled %s",
        locked.dispute_id,
        extra={"actor_id": actor.id},
    )
    return _refresh(dispute, locked)


def submit_satisfaction(
    dispute: Dispute, user: "User", rating: int, feedback: str = ""
) -> Dispute:
    """Store the customer's rating of how the dispute was handled."""
    if user.id != dispute.customer_id:
        raise PermissionDenied("Only the customer can rate the dispute outcome.")
    try:
        rating = int(rating)
    except (TypeError, ValueError) as exc:
        raise serializers.ValidationError({"rating": ["Rating must be an integer."]}) from exc
    if not 1 <= rating <= 5:
        raise serializers.ValidationError({"rating": ["Rating must be between 1 and 5."]})

    with transaction.atomic():
        locked = _lock(dispute)
        if locked.status not in Dispute.CLOSING_STATUSES:
            raise serializers.ValidationError(
                {"status": ["Satisfaction can only be submitted after resolution."]}
            )
        if locked.satisfaction_rating is not None:
            raise ConflictError("Satisfaction was already submitted for this dispute.")
        locked.satisfaction_rating = rating
        locked.satisfaction_feedback = feedback or ""
        locked.satisfaction_submitted_at = timezone.now()
        locked.save(
            update_fields=[
                "satisfaction_rating",
                "satisfaction_feedback",
                "satisfaction_submitted_at",
                "updated_at",
            ]
        )
    return _refresh(dispute, locked)
