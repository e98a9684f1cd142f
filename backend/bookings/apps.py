"""App configuration for the bookings domain."""

from django.apps import AppConfig


class BookingsConfig(AppConfig):
    """Register the bookings app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "bookings"
