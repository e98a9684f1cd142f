"""Database models for service bookings."""

from __future__ import annotations

from django.conf import settings
from django.db import models


class Booking(models.Model):
    """A customer's request for a technician to perform a home service."""

    class Status(models.TextChoices):
        PENDING = "pending", "pending"
        ACCEPTED = "accepted", "accepted"
        CONFIRMED = "confirmed", "confirmed"
        EN_ROUTE = "en_route", "en_route"
        IN_PROGRESS = "in_progress", "in_progress"
        COMPLETED = "completed", "completed"
        CANCELLED = "cancelled", "cancelled"
        REJECTED = "rejected", "rejected"
        DISPUTED = "disputed", "disputed"
        REFUNDED = "refunded", "refunded"

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_customer",
        on_delete=models.CASCADE,
    )
    technician = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_technician",
        on_delete=models.CASCADE,
    )
    service_type = models.CharField(max_length=64)
    description = models.TextField(blank=True)
    scheduled_date = models.DateTimeField()
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.PENDING,
    )
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["customer", "status"], name="bookings_bo_custome_5b3f0e_idx"),
            models.Index(fields=["technician", "status"], name="bookings_bo_technic_9a1c42_idx"),
        ]

    def __str__(self) -> str:
        """Return a human-readable representation."""
        return f"Booking #{self.pk} {self.service_type} ({self.status})"

    def is_party(self, user) -> bool:
        """Return True when the user is the booking's customer or technician."""
        user_id = getattr(user, "id", None)
        return user_id is not None and user_id in {self.customer_id, self.technician_id}

    def is_terminal(self) -> bool:
        """Return True if the booking reached a terminal state."""
        return self.status in {
            self.Status.COMPLETED,
            self.Status.CANCELLED,
            self.Status.REJECTED,
            self.Status.REFUNDED,
        }
