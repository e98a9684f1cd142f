from django.apps import AppConfig


class DisputesConfig(AppConfig):
    """Dispute cases, their workflow and statistics."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "disputes"
    verbose_name = "Disputes"
