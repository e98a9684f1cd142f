from __future__ import annotations

import re
from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework import serializers
from rest_framework.exceptions import PermissionDenied

from bookings.models import Booking
from core.exceptions import ConflictError, InvalidTransition
from disputes import workflow
from disputes.models import Dispute, DisputeCommunication, DisputeInternalNote

pytestmark = pytest.mark.django_db


def test_service_quality_dispute_end_to_end(dispute_factory, admin_user, booking):
    dispute = dispute_factory(booking=booking, category=Dispute.Category.SERVICE_QUALITY)

    assert re.match(r"^DIS-\d+-[A-Z0-9]{9}$", dispute.dispute_id)
    assert dispute.status == Dispute.Status.OPEN
    assert dispute.initiator_role == Dispute.InitiatorRole.CUSTOMER
    assert dispute.customer_id == booking.customer_id
    assert dispute.technician_id == booking.technician_id

    before = timezone.now()
    workflow.resolve(
        dispute,
        Dispute.Decision.CUSTOMER_FAVOR,
        "Technician agreed the repair was incomplete.",
        admin_user,
        refund_amount=50,
    )

    assert dispute.status == Dispute.Status.RESOLVED
    assert dispute.resolution["refund_amount"] == Decimal("50.00")
    assert dispute.resolution["resolved_at"] >= before
    assert dispute.resolved_by_id == admin_user.id
    assert dispute.closed_at is not None
    assert dispute.first_response_at is not None


def test_file_dispute_sets_deadlines_and_marks_booking(settings, dispute_factory, booking):
    settings.DISPUTE_RESPONSE_WINDOW_HOURS = 24
    settings.DISPUTE_ESCALATION_WINDOW_HOURS = 72
    dispute = dispute_factory(booking=booking, tags=["Urgent", " leak ", "urgent"])

    assert dispute.deadline - dispute.created_at == timedelta(hours=24)
    assert dispute.escalation_deadline - dispute.created_at == timedelta(hours=72)
    assert dispute.tags == ["urgent", "leak"]
    booking.refresh_from_db()
    assert booking.status == Booking.Status.DISPUTED


def test_technician_can_file(dispute_factory, technician_user):
    dispute = dispute_factory(initiated_by=technician_user, category=Dispute.Category.NO_SHOW)
    assert dispute.initiator_role == Dispute.InitiatorRole.TECHNICIAN


def test_outsider_cannot_file(dispute_factory, other_user):
    with pytest.raises(PermissionDenied):
        dispute_factory(initiated_by=other_user)


def test_one_active_dispute_per_booking(dispute_factory, booking, customer_user):
    first = dispute_factory(booking=booking)
    with pytest.raises(ConflictError):
        dispute_factory(booking=booking)

    workflow.cancel_dispute(first, customer_user, "Sorted it out directly")
    again = dispute_factory(booking=booking)
    assert again.pk != first.pk


@pytest.mark.parametrize(
    "path",
    [
        [Dispute.Status.UNDER_REVIEW, Dispute.Status.INVESTIGATING, Dispute.Status.MEDIATION],
        [Dispute.Status.ESCALATED, Dispute.Status.UNDER_REVIEW],
        [Dispute.Status.INVESTIGATING, Dispute.Status.ESCALATED, Dispute.Status.MEDIATION],
    ],
)
def test_allowed_paths(dispute, admin_user, path):
    for status in path:
        workflow.transition_status(dispute, status, actor=admin_user)
        assert dispute.status == status


@pytest.mark.parametrize(
    "start, target",
    [
        (Dispute.Status.MEDIATION, Dispute.Status.UNDER_REVIEW),
        (Dispute.Status.INVESTIGATING, Dispute.Status.UNDER_REVIEW),
        (Dispute.Status.CANCELLED, Dispute.Status.OPEN),
        (Dispute.Status.CLOSED, Dispute.Status.UNDER_REVIEW),
        (Dispute.Status.RESOLVED, Dispute.Status.MEDIATION),
        (Dispute.Status.OPEN, Dispute.Status.CLOSED),
    ],
)
def test_disallowed_transitions(dispute, start, target):
    Dispute.objects.filter(pk=dispute.pk).update(status=start)
    dispute.refresh_from_db()
    with pytest.raises(InvalidTransition):
        workflow.transition_status(dispute, target)
    dispute.refresh_from_db()
    assert dispute.status == start


def test_resolved_only_through_resolve(dispute):
    with pytest.raises(serializers.ValidationError):
        workflow.transition_status(dispute, Dispute.Status.RESOLVED)


def test_first_response_only_on_first_move(dispute, admin_user):
    workflow.transition_status(dispute, Dispute.Status.UNDER_REVIEW, actor=admin_user)
    first = dispute.first_response_at
    workflow.transition_status(dispute, Dispute.Status.INVESTIGATING, actor=admin_user)
    workflow.escalate(dispute, "needs a supervisor", admin_user)
    assert dispute.first_response_at == first


def test_second_resolve_rejected(dispute, admin_user):
    workflow.resolve(dispute, Dispute.Decision.NO_ACTION, "No fault found.", admin_user)
    resolved_at = dispute.resolved_at

    with pytest.raises(InvalidTransition):
        workflow.resolve(dispute, Dispute.Decision.CUSTOMER_FAVOR, "Changed mind.", admin_user)

    dispute.refresh_from_db()
    assert dispute.resolution_decision == Dispute.Decision.NO_ACTION
    assert dispute.resolved_at == resolved_at


def test_resolve_rejects_negative_amounts(dispute, admin_user):
    with pytest.raises(serializers.ValidationError):
        workflow.resolve(
            dispute, Dispute.Decision.PARTIAL_CUSTOMER, "x", admin_user, refund_amount=-1
        )
    dispute.refresh_from_db()
    assert dispute.status == Dispute.Status.OPEN


def test_escalate_adds_hidden_note(dispute, customer_user):
    workflow.escalate(dispute, "No reply from technician", customer_user)

    assert dispute.status == Dispute.Status.ESCALATED
    note = dispute.internal_notes.get()
    assert note.note == "Escalated: No reply from technician"
    assert note.added_by_id == customer_user.id
    assert note.visible_to_customer is False
    assert note.visible_to_technician is False

    with pytest.raises(InvalidTransition):
        workflow.escalate(dispute, "again", customer_user)


def test_escalate_after_resolve_is_rejected(dispute, admin_user):
    workflow.resolve(dispute, Dispute.Decision.NO_ACTION, "Nothing to do.", admin_user)
    with pytest.raises(InvalidTransition):
        workflow.escalate(dispute, "late", admin_user)
    assert DisputeInternalNote.objects.filter(dispute=dispute).count() == 0


def test_close_only_after_resolution(dispute, admin_user):
    with pytest.raises(InvalidTransition):
        workflow.close_dispute(dispute, admin_user)
    workflow.resolve(dispute, Dispute.Decision.WARNING_ISSUED, "Warned.", admin_user)
    closed_at = dispute.closed_at
    workflow.close_dispute(dispute, admin_user)
    assert dispute.status == Dispute.Status.CLOSED
    assert dispute.closed_at == closed_at


def test_cancel_rules(dispute, technician_user, customer_user):
    with pytest.raises(PermissionDenied):
        workflow.cancel_dispute(dispute, technician_user, "not mine")

    workflow.cancel_dispute(dispute, customer_user, "Resolved with the technician")
    assert dispute.status == Dispute.Status.CANCELLED
    note = dispute.internal_notes.get()
    assert note.note == "Cancelled: Resolved with the technician"
    assert not note.visible_to_customer and not note.visible_to_technician

    with pytest.raises(InvalidTransition):
        workflow.cancel_dispute(dispute, customer_user)


def test_add_communication_leaves_status(dispute, admin_user):
    entry = workflow.add_communication(
        dispute,
        DisputeCommunication.Kind.CALL,
        DisputeCommunication.Direction.OUTBOUND,
        admin_user,
        "Called the technician",
        notes="Will revisit Friday",
        attachments=["https://files.example.com/call.txt"],
    )
    dispute.refresh_from_db()
    assert dispute.status == Dispute.Status.OPEN
    assert entry.timestamp is not None
    assert entry.attachments == ["https://files.example.com/call.txt"]

    with pytest.raises(serializers.ValidationError):
        workflow.add_communication(dispute, "fax", "inbound", admin_user, "hi")


def test_evidence_permissions(dispute, technician_user, other_user):
    item = workflow.add_evidence(
        dispute,
        technician_user,
        kind="image",
        url="https://files.example.com/after.jpg",
        filename="after.jpg",
    )
    assert item.uploaded_by_id == technician_user.id
    with pytest.raises(PermissionDenied):
        workflow.add_evidence(dispute, other_user, kind="image", url="https://x.example.com/a.jpg")


def test_assign_moves_open_to_under_review(dispute, admin_user, customer_user):
    with pytest.raises(serializers.ValidationError):
        workflow.assign_dispute(dispute, customer_user)

    workflow.assign_dispute(dispute, admin_user, assigned_by=admin_user)
    assert dispute.assigned_to_id == admin_user.id
    assert dispute.assigned_at is not None
    assert dispute.status == Dispute.Status.UNDER_REVIEW
    assert dispute.first_response_at is not None


def test_staff_account_counts_as_admin(dispute, admin_user, staff_user):
    workflow.assign_dispute(dispute, staff_user)
    assert dispute.assigned_to_id == staff_user.id

    workflow.add_internal_note(dispute, "staff only", admin_user)
    assert [n.note for n in workflow.notes_visible_to(dispute, staff_user)] == ["staff only"]


def test_notes_visibility(dispute, admin_user, customer_user, technician_user):
    workflow.add_internal_note(dispute, "staff only", admin_user)
    workflow.add_internal_note(dispute, "for customer", admin_user, visible_to_customer=True)
    workflow.add_internal_note(dispute, "for both", admin_user, visible_to_customer=True, visible_to_technician=True)

    def texts(user):
        return [n.note for n in workflow.notes_visible_to(dispute, user)]

    assert texts(admin_user) == ["staff only", "for customer", "for both"]
    assert texts(customer_user) == ["for customer", "for both"]
    assert texts(technician_user) == ["for both"]


def test_follow_ups_tags_and_related(dispute_factory, booking_factory, admin_user):
    first = dispute_factory(booking=booking_factory())
    second = dispute_factory(booking=booking_factory())

    action = workflow.add_follow_up_action(
        first, "Schedule revisit", assigned_to=admin_user, due_date=timezone.now()
    )
    workflow.complete_follow_up_action(action, notes="Booked for Friday")
    action.refresh_from_db()
    assert action.completed and action.completed_at is not None
    assert action.notes == "Booked for Friday"

    assert workflow.add_tags(first, ["Plumbing", "repeat"]) == ["plumbing", "repeat"]
    assert workflow.add_tags(first, ["repeat", "vip"]) == ["plumbing", "repeat", "vip"]

    workflow.link_related_dispute(first, second)
    assert list(second.related_disputes.values_list("pk", flat=True)) == [first.pk]
    with pytest.raises(serializers.ValidationError):
        workflow.link_related_dispute(first, first)


def test_satisfaction_rules(dispute, admin_user, customer_user, technician_user):
    with pytest.raises(serializers.ValidationError):
        workflow.submit_satisfaction(dispute, customer_user, 4)

    workflow.resolve(dispute, Dispute.Decision.CUSTOMER_FAVOR, "Refunded.", admin_user)

    with pytest.raises(PermissionDenied):
        workflow.submit_satisfaction(dispute, technician_user, 5)
    with pytest.raises(serializers.ValidationError):
        workflow.submit_satisfaction(dispute, customer_user, 6)

    workflow.submit_satisfaction(dispute, customer_user, 4, "Quick turnaround")
    assert dispute.satisfaction["rating"] == 4
    assert dispute.satisfaction["feedback"] == "Quick turnaround"

    with pytest.raises(ConflictError):
        workflow.submit_satisfaction(dispute, customer_user, 5)
