from __future__ import annotations

from urllib.parse import quote_plus

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Marketplace account: a customer, a technician, or a platform admin."""

    class Role(models.TextChoices):
        CUSTOMER = "customer", "Customer"
        TECHNICIAN = "technician", "Technician"
        ADMIN = "admin", "Admin"

    role = models.CharField(
        max_length=16,
        choices=Role.choices,
        default=Role.CUSTOMER,
    )
    phone = models.CharField(
        max_length=32,
        unique=True,
        null=True,
        blank=True,
        help_text="Optional E.164 formatted phone number.",
    )
    avatar = models.URLField(blank=True, default="")

    @property
    def is_platform_admin(self) -> bool:
        return self.role == self.Role.ADMIN or self.is_staff

    @property
    def display_name(self) -> str:
        return (self.get_full_name() or self.username or f"user-{self.pk}").strip()

    @property
    def avatar_url(self) -> str:
        """
        Return either the stored avatar URL or a deterministic placeholder.
        """
        if self.avatar:
            return self.avatar
        seed = quote_plus(self.display_name)
        return f"https://api.dicebear.com/7.x/initials/svg?seed={seed}&backgroundColor=5B8CA6"
