"""Models for handling dispute cases and related artifacts."""

from __future__ import annotations

import math
import secrets
import string

from django.conf import settings
from django.db import models
from django.utils import timezone

_ID_ALPHABET = string.digits + string.ascii_uppercase
_ID_SUFFIX_LENGTH = 9
_SECONDS_PER_DAY = 24 * 60 * 60


def generate_dispute_id(now=None) -> str:
    """Return a new public dispute reference like ``DIS-1700000000000-K3ZQ81XA0``."""
    now = now or timezone.now()
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_SUFFIX_LENGTH))
    return f"DIS-{millis}-{suffix}"


def _whole_days(start, end) -> int:
    return math.floor((end - start).total_seconds() / _SECONDS_PER_DAY)


class DisputeQuerySet(models.QuerySet):
    def active(self) -> "DisputeQuerySet":
        return self.exclude(status__in=Dispute.TERMINAL_STATUSES)

    def visible_to(self, user) -> "DisputeQuerySet":
        if user.is_platform_admin:
            return self
        return self.filter(models.Q(customer=user) | models.Q(technician=user))

    def find_by_status(
        self,
        status: str,
        *,
        limit: int = 20,
        skip: int = 0,
        sort: tuple[str, ...] = ("-created_at",),
    ) -> "DisputeQuerySet":
        """Return a page of disputes in ``status`` with their parties loaded."""
        qs = (
            self.filter(status=status)
            .select_related("customer", "technician", "assigned_to", "booking")
            .order_by(*sort)
        )
        return qs[skip : skip + limit]


class Dispute(models.Model):
    """A dispute raised by one party of a booking."""

    class Category(models.TextChoices):
        SERVICE_QUALITY = "service_quality", "service_quality"
        PRICING = "pricing", "pricing"
        TIMING = "timing", "timing"
        COMMUNICATION = "communication", "communication"
        DAMAGE = "damage", "damage"
        NO_SHOW = "no_show", "no_show"
        INCOMPLETE_WORK = "incomplete_work", "incomplete_work"
        PAYMENT_ISSUE = "payment_issue", "payment_issue"
        BEHAVIOR = "behavior", "behavior"
        OTHER = "other", "other"

    class Priority(models.TextChoices):
        LOW = "low", "low"
        MEDIUM = "medium", "medium"
        HIGH = "high", "high"
        URGENT = "urgent", "urgent"

    class Status(models.TextChoices):
        OPEN = "open", "open"
        UNDER_REVIEW = "under_review", "under_review"
        INVESTIGATING = "investigating", "investigating"
        MEDIATION = "mediation", "mediation"
        RESOLVED = "resolved", "resolved"
        CLOSED = "closed", "closed"
        ESCALATED = "escalated", "escalated"
        CANCELLED = "cancelled", "cancelled"

    class InitiatorRole(models.TextChoices):
        CUSTOMER = "customer", "customer"
        TECHNICIAN = "technician", "technician"

    class ResolutionKind(models.TextChoices):
        REFUND = "refund", "refund"
        PARTIAL_REFUND = "partial_refund", "partial_refund"
        REWORK = "rework", "rework"
        REPLACEMENT = "replacement", "replacement"
        APOLOGY = "apology", "apology"
        OTHER = "other", "other"

    class Decision(models.TextChoices):
        CUSTOMER_FAVOR = "customer_favor", "customer_favor"
        TECHNICIAN_FAVOR = "technician_favor", "technician_favor"
        PARTIAL_CUSTOMER = "partial_customer", "partial_customer"
        PARTIAL_TECHNICIAN = "partial_technician", "partial_technician"
        NO_ACTION = "no_action", "no_action"
        PLATFORM_CREDIT = "platform_credit", "platform_credit"
        WARNING_ISSUED = "warning_issued", "warning_issued"

    class Source(models.TextChoices):
        WEB = "web", "web"
        MOBILE = "mobile", "mobile"
        PHONE = "phone", "phone"
        EMAIL = "email", "email"

    TERMINAL_STATUSES = (Status.RESOLVED, Status.CLOSED, Status.CANCELLED)
    CLOSING_STATUSES = (Status.RESOLVED, Status.CLOSED)

    dispute_id = models.CharField(max_length=32, unique=True, editable=False)
    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="disputes",
    )
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="disputes_as_customer",
    )
    technician = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="disputes_as_technician",
    )
    initiated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="disputes_initiated",
    )
    initiator_role = models.CharField(choices=InitiatorRole.choices, max_length=16)

    category = models.CharField(choices=Category.choices, max_length=32)
    priority = models.CharField(
        choices=Priority.choices,
        max_length=16,
        default=Priority.MEDIUM,
    )
    title = models.CharField(max_length=200)
    description = models.TextField(max_length=2000)

    requested_resolution_kind = models.CharField(
        choices=ResolutionKind.choices,
        max_length=32,
    )
    requested_resolution_amount = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True
    )
    requested_resolution_description = models.TextField(blank=True, default="")

    status = models.CharField(
        choices=Status.choices,
        max_length=16,
        default=Status.OPEN,
    )
    deadline = models.DateTimeField(null=True, blank=True)
    escalation_deadline = models.DateTimeField(null=True, blank=True)

    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="disputes_assigned",
    )
    assigned_at = models.DateTimeField(null=True, blank=True)

    resolution_decision = models.CharField(
        choices=Decision.choices,
        max_length=32,
        null=True,
        blank=True,
    )
    resolution_final_amount = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True
    )
    resolution_refund_amount = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True
    )
    resolution_compensation = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True
    )
    resolution_explanation = models.TextField(blank=True, default="")
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="disputes_resolved",
    )
    resolved_at = models.DateTimeField(null=True, blank=True)
    resolution_notes = models.TextField(blank=True, default="")

    satisfaction_rating = models.PositiveSmallIntegerField(null=True, blank=True)
    satisfaction_feedback = models.TextField(blank=True, default="")
    satisfaction_submitted_at = models.DateTimeField(null=True, blank=True)

    related_disputes = models.ManyToManyField("self", blank=True, symmetrical=True)
    tags = models.JSONField(default=list, blank=True)
    source = models.CharField(choices=Source.choices, max_length=16, default=Source.WEB)
    language = models.CharField(max_length=8, default="en")

    first_response_at = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    objects = DisputeQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["booking", "status"], name="disputes_booking_status_idx"),
            models.Index(fields=["status", "priority"], name="disputes_status_prio_idx"),
            models.Index(fields=["customer"], name="disputes_customer_idx"),
            models.Index(fields=["technician"], name="disputes_technician_idx"),
        ]

    def __str__(self) -> str:
        """Return a readable identifier."""
        return f"Dispute {self.dispute_id} booking {self.booking_id} ({self.status})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_status = instance.__dict__.get("status")
        return instance

    def refresh_from_db(self, *args, **kwargs):
        super().refresh_from_db(*args, **kwargs)
        self._loaded_status = self.status

    def save(self, *args, **kwargs):
        now = timezone.now()
        update_fields = kwargs.get("update_fields")
        touched: list[str] = []

        if self._state.adding and not self.dispute_id:
            self.dispute_id = generate_dispute_id(now)

        previous = None if self._state.adding else getattr(self, "_loaded_status", None)
        status_changed = self._state.adding or previous != self.status
        if status_changed and self.status != self.Status.OPEN and self.first_response_at is None:
            self.first_response_at = now
            touched.append("first_response_at")
        if status_changed and self.status in self.CLOSING_STATUSES and self.closed_at is None:
            self.closed_at = now
            touched.append("closed_at")

        if update_fields is not None and touched:
            kwargs["update_fields"] = list(dict.fromkeys([*update_fields, *touched]))
        super().save(*args, **kwargs)
        self._loaded_status = self.status

    def is_party(self, user) -> bool:
        user_id = getattr(user, "id", None)
        return user_id is not None and user_id in {self.customer_id, self.technician_id}

    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def resolution(self) -> dict | None:
        if self.resolved_at is None:
            return None
        return {
            "decision": self.resolution_decision,
            "explanation": self.resolution_explanation,
            "resolved_by": self.resolved_by_id,
            "resolved_at": self.resolved_at,
            "resolution_notes": self.resolution_notes,
            "final_amount": self.resolution_final_amount,
            "refund_amount": self.resolution_refund_amount,
            "compensation": self.resolution_compensation,
        }

    @property
    def satisfaction(self) -> dict | None:
        if self.satisfaction_rating is None:
            return None
        return {
            "rating": self.satisfaction_rating,
            "feedback": self.satisfaction_feedback,
            "submitted_at": self.satisfaction_submitted_at,
        }

    @property
    def age_in_days(self) -> int:
        return _whole_days(self.created_at, timezone.now())

    @property
    def time_to_resolution(self) -> int | None:
        if self.resolved_at is None:
            return None
        return _whole_days(self.created_at, self.resolved_at)


class DisputeEvidence(models.Model):
    """Evidence files attached to a dispute."""

    class Kind(models.TextChoices):
        IMAGE = "image", "image"
        VIDEO = "video", "video"
        DOCUMENT = "document", "document"
        AUDIO = "audio", "audio"

    dispute = models.ForeignKey(
        Dispute,
        on_delete=models.CASCADE,
        related_name="evidence",
    )
    uploaded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="dispute_evidence",
    )
    kind = models.CharField(choices=Kind.choices, max_length=16)
    url = models.URLField(max_length=1024)
    filename = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True, default="")
    uploaded_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-uploaded_at", "-id"]


class DisputeCommunication(models.Model):
    """Audit log of contact made while handling a dispute."""

    class Kind(models.TextChoices):
        MESSAGE = "message", "message"
        CALL = "call", "call"
        EMAIL = "email", "email"
        MEETING = "meeting", "meeting"
        DOCUMENT = "document", "document"

    class Direction(models.TextChoices):
        INBOUND = "inbound", "inbound"
        OUTBOUND = "outbound", "outbound"

    dispute = models.ForeignKey(
        Dispute,
        on_delete=models.CASCADE,
        related_name="communications",
    )
    kind = models.CharField(choices=Kind.choices, max_length=16)
    direction = models.CharField(choices=Direction.choices, max_length=16)
    participant = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="dispute_communications",
    )
    summary = models.TextField()
    notes = models.TextField(blank=True, default="")
    attachments = models.JSONField(default=list, blank=True)
    timestamp = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["timestamp", "id"]


class DisputeInternalNote(models.Model):
    """Staff note on a dispute; added_by is empty for system notes."""

    dispute = models.ForeignKey(
        Dispute,
        on_delete=models.CASCADE,
        related_name="internal_notes",
    )
    note = models.TextField()
    added_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="dispute_notes",
    )
    visible_to_customer = models.BooleanField(default=False)
    visible_to_technician = models.BooleanField(default=False)
    added_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["added_at", "id"]


class DisputeFollowUpAction(models.Model):
    dispute = models.ForeignKey(
        Dispute,
        on_delete=models.CASCADE,
        related_name="follow_up_actions",
    )
    action = models.CharField(max_length=255)
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="dispute_follow_ups",
    )
    due_date = models.DateTimeField(null=True, blank=True)
    completed = models.BooleanField(default=False)
    completed_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["due_date", "id"]
