import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Dispute",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("dispute_id", models.CharField(editable=False, max_length=32, unique=True)),
                (
                    "initiator_role",
                    models.CharField(
                        choices=[("customer", "customer"), ("technician", "technician")],
                        max_length=16,
                    ),
                ),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("service_quality", "service_quality"),
                            ("pricing", "pricing"),
                            ("timing", "timing"),
                            ("communication", "communication"),
                            ("damage", "damage"),
                            ("no_show", "no_show"),
                            ("incomplete_work", "incomplete_work"),
                            ("payment_issue", "payment_issue"),
                            ("behavior", "behavior"),
                            ("other", "other"),
                        ],
                        max_length=32,
                    ),
                ),
                (
                    "priority",
                    models.CharField(
                        choices=[
                            ("low", "low"),
                            ("medium", "medium"),
                            ("high", "high"),
                            ("urgent", "urgent"),
                        ],
                        default="medium",
                        max_length=16,
                    ),
                ),
                ("title", models.CharField(max_length=200)),
                ("description", models.TextField(max_length=2000)),
                (
                    "requested_resolution_kind",
                    models.CharField(
                        choices=[
                            ("refund", "refund"),
                            ("partial_refund", "partial_refund"),
                            ("rework", "rework"),
                            ("replacement", "replacement"),
                            ("apology", "apology"),
                            ("other", "other"),
                        ],
                        max_length=32,
                    ),
                ),
                (
                    "requested_resolution_amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                (
                    "requested_resolution_description",
                    models.TextField(blank=True, default=""),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("open", "open"),
                            ("under_review", "under_review"),
                            ("investigating", "investigating"),
                            ("mediation", "mediation"),
                            ("resolved", "resolved"),
                            ("closed", "closed"),
                            ("escalated", "escalated"),
                            ("cancelled", "cancelled"),
                        ],
                        default="open",
                        max_length=16,
                    ),
                ),
                ("deadline", models.DateTimeField(blank=True, null=True)),
                ("escalation_deadline", models.DateTimeField(blank=True, null=True)),
                ("assigned_at", models.DateTimeField(blank=True, null=True)),
                (
                    "resolution_decision",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("customer_favor", "customer_favor"),
                            ("technician_favor", "technician_favor"),
                            ("partial_customer", "partial_customer"),
                            ("partial_technician", "partial_technician"),
                            ("no_action", "no_action"),
                            ("platform_credit", "platform_credit"),
                            ("warning_issued", "warning_issued"),
                        ],
                        max_length=32,
                        null=True,
                    ),
                ),
                (
                    "resolution_final_amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                (
                    "resolution_refund_amount",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                (
                    "resolution_compensation",
                    models.DecimalField(blank=True, decimal_places=2, max_digits=10, null=True),
                ),
                ("resolution_explanation", models.TextField(blank=True, default="")),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("resolution_notes", models.TextField(blank=True, default="")),
                ("satisfaction_rating", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("satisfaction_feedback", models.TextField(blank=True, default="")),
                ("satisfaction_submitted_at", models.DateTimeField(blank=True, null=True)),
                ("tags", models.JSONField(blank=True, default=list)),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("web", "web"),
                            ("mobile", "mobile"),
                            ("phone", "phone"),
                            ("email", "email"),
                        ],
                        default="web",
                        max_length=16,
                    ),
                ),
                ("language", models.CharField(default="en", max_length=8)),
                ("first_response_at", models.DateTimeField(blank=True, null=True)),
                ("closed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "assigned_to",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="disputes_assigned",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "booking",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="disputes",
                        to="bookings.booking",
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="disputes_as_customer",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "initiated_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="disputes_initiated",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                ("related_disputes", models.ManyToManyField(blank=True, to="disputes.dispute")),
                (
                    "resolved_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="disputes_resolved",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "technician",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="disputes_as_technician",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["booking", "status"], name="disputes_booking_status_idx"),
                    models.Index(fields=["status", "priority"], name="disputes_status_prio_idx"),
                    models.Index(fields=["customer"], name="disputes_customer_idx"),
                    models.Index(fields=["technician"], name="disputes_technician_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="DisputeCommunication",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("message", "message"),
                            ("call", "call"),
                            ("email", "email"),
                            ("meeting", "meeting"),
                            ("document", "document"),
                        ],
                        max_length=16,
                    ),
                ),
                (
                    "direction",
                    models.CharField(
                        choices=[("inbound", "inbound"), ("outbound", "outbound")],
                        max_length=16,
                    ),
                ),
                ("summary", models.TextField()),
                ("notes", models.TextField(blank=True, default="")),
                ("attachments", models.JSONField(blank=True, default=list)),
                ("timestamp", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "dispute",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="communications",
                        to="disputes.dispute",
                    ),
                ),
                (
                    "participant",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="dispute_communications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["timestamp", "id"],
            },
        ),
        migrations.CreateModel(
            name="DisputeEvidence",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("image", "image"),
                            ("video", "video"),
                            ("document", "document"),
                            ("audio", "audio"),
                        ],
                        max_length=16,
                    ),
                ),
                ("url", models.URLField(max_length=1024)),
                ("filename", models.CharField(blank=True, max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                ("uploaded_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "dispute",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="evidence",
                        to="disputes.dispute",
                    ),
                ),
                (
                    "uploaded_by",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="dispute_evidence",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-uploaded_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="DisputeFollowUpAction",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("action", models.CharField(max_length=255)),
                ("due_date", models.DateTimeField(blank=True, null=True)),
                ("completed", models.BooleanField(default=False)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("notes", models.TextField(blank=True, default="")),
                (
                    "assigned_to",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="dispute_follow_ups",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "dispute",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="follow_up_actions",
                        to="disputes.dispute",
                    ),
                ),
            ],
            options={
                "ordering": ["due_date", "id"],
            },
        ),
        migrations.CreateModel(
            name="DisputeInternalNote",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("note", models.TextField()),
                ("visible_to_customer", models.BooleanField(default=False)),
                ("visible_to_technician", models.BooleanField(default=False)),
                ("added_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "added_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="dispute_notes",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "dispute",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="internal_notes",
                        to="disputes.dispute",
                    ),
                ),
            ],
            options={
                "ordering": ["added_at", "id"],
            },
        ),
    ]
