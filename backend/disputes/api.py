"""API endpoints for disputes."""

from __future__ import annotations

import logging
from datetime import datetime, time
from typing import Any

from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import permissions, serializers, status, viewsets
from rest_framework.decorators import action

from bookings.models import Booking
from core.pagination import FixItNowPagination
from core.responses import ok
from users.serializers import UserSummarySerializer

from . import workflow
from .models import (
    Dispute,
    DisputeCommunication,
    DisputeEvidence,
    DisputeFollowUpAction,
    DisputeInternalNote,
)
from .stats import get_dispute_stats

logger = logging.getLogger(__name__)

User = get_user_model()


class IsDisputeParticipant(permissions.BasePermission):
    """Allow the dispute's customer, technician or a platform admin."""

    def has_permission(self, request, view) -> bool:
        user = request.user
        return bool(user and user.is_authenticated)

    def has_object_permission(self, request, view, obj: Dispute) -> bool:
        user = request.user
        if not user or not user.is_authenticated:
            return False
        return user.is_platform_admin or obj.is_party(user)


class IsPlatformAdmin(permissions.BasePermission):
    message = "Only platform admins can perform this action."

    def has_permission(self, request, view) -> bool:
        user = request.user
        return bool(user and user.is_authenticated and user.is_platform_admin)


class DisputeEvidenceSerializer(serializers.ModelSerializer):
    class Meta:
        model = DisputeEvidence
        fields = ["id", "kind", "url", "filename", "description", "uploaded_by", "uploaded_at"]
        read_only_fields = ["id", "uploaded_by", "uploaded_at"]


class DisputeCommunicationSerializer(serializers.ModelSerializer):
    attachments = serializers.ListField(
        child=serializers.CharField(max_length=1024), required=False
    )

    class Meta:
        model = DisputeCommunication
        fields = [
            "id",
            "kind",
            "direction",
            "participant",
            "summary",
            "notes",
            "attachments",
            "timestamp",
        ]
        read_only_fields = ["id", "timestamp"]
        extra_kwargs = {"participant": {"required": False}}


class DisputeInternalNoteSerializer(serializers.ModelSerializer):
    class Meta:
        model = DisputeInternalNote
        fields = [
            "id",
            "note",
            "added_by",
            "visible_to_customer",
            "visible_to_technician",
            "added_at",
        ]
        read_only_fields = ["id", "added_by", "added_at"]


class DisputeFollowUpActionSerializer(serializers.ModelSerializer):
    class Meta:
        model = DisputeFollowUpAction
        fields = ["id", "action", "assigned_to", "due_date", "completed", "completed_at", "notes"]
        read_only_fields = ["id", "completed", "completed_at"]


class DisputeListSerializer(serializers.ModelSerializer):
    """Compact dispute payload for list views."""

    customer = UserSummarySerializer(read_only=True)
    technician = UserSummarySerializer(read_only=True)
    age_in_days = serializers.IntegerField(read_only=True)

    class Meta:
        model = Dispute
        fields = [
            "id",
            "dispute_id",
            "booking",
            "customer",
            "technician",
            "initiator_role",
            "category",
            "priority",
            "title",
            "status",
            "assigned_to",
            "deadline",
            "age_in_days",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class DisputeSerializer(DisputeListSerializer):
    """Full dispute payload, with internal notes filtered for the viewer."""

    requested_resolution = serializers.SerializerMethodField()
    resolution = serializers.SerializerMethodField()
    satisfaction = serializers.SerializerMethodField()
    time_to_resolution = serializers.IntegerField(read_only=True, allow_null=True)
    evidence = DisputeEvidenceSerializer(many=True, read_only=True)
    communications = DisputeCommunicationSerializer(many=True, read_only=True)
    internal_notes = serializers.SerializerMethodField()
    follow_up_actions = DisputeFollowUpActionSerializer(many=True, read_only=True)
    related_disputes = serializers.SlugRelatedField(
        many=True, read_only=True, slug_field="dispute_id"
    )

    class Meta(DisputeListSerializer.Meta):
        fields = DisputeListSerializer.Meta.fields + [
            "initiated_by",
            "description",
            "requested_resolution",
            "escalation_deadline",
            "assigned_at",
            "resolution",
            "satisfaction",
            "time_to_resolution",
            "first_response_at",
            "closed_at",
            "tags",
            "source",
            "language",
            "related_disputes",
            "evidence",
            "communications",
            "internal_notes",
            "follow_up_actions",
        ]
        read_only_fields = fields

    def get_requested_resolution(self, obj: Dispute) -> dict[str, Any]:
        return {
            "kind": obj.requested_resolution_kind,
            "amount": obj.requested_resolution_amount,
            "description": obj.requested_resolution_description,
        }

    def get_resolution(self, obj: Dispute) -> dict | None:
        resolution = obj.resolution
        if resolution is None:
            return None
        return {
            **resolution,
            "final_amount": _money(resolution["final_amount"]),
            "refund_amount": _money(resolution["refund_amount"]),
            "compensation": _money(resolution["compensation"]),
        }

    def get_satisfaction(self, obj: Dispute) -> dict | None:
        return obj.satisfaction

    def get_internal_notes(self, obj: Dispute) -> list[dict]:
        request = self.context.get("request")
        user = getattr(request, "user", None)
        if user is None:
            return []
        notes = workflow.notes_visible_to(obj, user)
        return DisputeInternalNoteSerializer(notes, many=True).data


def _money(value) -> str | None:
    return None if value is None else f"{value:.2f}"


class FileDisputeSerializer(serializers.Serializer):
    """Validate payload for filing a dispute."""

    booking = serializers.PrimaryKeyRelatedField(queryset=Booking.objects.all())
    category = serializers.ChoiceField(choices=Dispute.Category.choices)
    priority = serializers.ChoiceField(
        choices=Dispute.Priority.choices, default=Dispute.Priority.MEDIUM
    )
    title = serializers.CharField(max_length=200)
    description = serializers.CharField(max_length=2000)
    requested_resolution_kind = serializers.ChoiceField(choices=Dispute.ResolutionKind.choices)
    requested_resolution_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True
    )
    requested_resolution_description = serializers.CharField(
        max_length=2000, required=False, allow_blank=True, default=""
    )
    source = serializers.ChoiceField(choices=Dispute.Source.choices, default=Dispute.Source.WEB)
    language = serializers.CharField(max_length=8, default="en")
    tags = serializers.ListField(
        child=serializers.CharField(max_length=50), required=False, default=list
    )


class TransitionSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Dispute.Status.choices)


class AssignSerializer(serializers.Serializer):
    assigned_to = serializers.PrimaryKeyRelatedField(queryset=User.objects.all())


class ResolveSerializer(serializers.Serializer):
    decision = serializers.ChoiceField(choices=Dispute.Decision.choices)
    explanation = serializers.CharField(max_length=4000)
    notes = serializers.CharField(max_length=4000, required=False, allow_blank=True)
    final_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True
    )
    refund_amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True
    )
    compensation = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True
    )


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=2000, required=False, allow_blank=True, default="")


class SatisfactionSerializer(serializers.Serializer):
    rating = serializers.IntegerField(min_value=1, max_value=5)
    feedback = serializers.CharField(max_length=2000, required=False, allow_blank=True, default="")


class RelatedDisputeSerializer(serializers.Serializer):
    dispute = serializers.SlugRelatedField(slug_field="dispute_id", queryset=Dispute.objects.all())


class TagsSerializer(serializers.Serializer):
    tags = serializers.ListField(child=serializers.CharField(max_length=50), allow_empty=False)


class StatsQuerySerializer(serializers.Serializer):
    start = serializers.DateField(required=False)
    end = serializers.DateField(required=False)


def _day_bound(value, at: time) -> datetime | None:
    if value is None:
        return None
    return timezone.make_aware(datetime.combine(value, at))


class DisputeViewSet(viewsets.GenericViewSet):
    """Dispute cases and their workflow actions."""

    permission_classes = [IsDisputeParticipant]
    filterset_fields = ["status", "category", "priority", "booking"]
    pagination_class = FixItNowPagination
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        return Dispute.objects.visible_to(self.request.user).select_related(
            "customer",
            "technician",
            "booking",
        )

    def get_object(self) -> Dispute:
        obj = get_object_or_404(
            self.get_queryset().prefetch_related(
                "evidence",
                "communications",
                "follow_up_actions",
                "related_disputes",
            ),
            pk=self.kwargs["pk"],
        )
        self.check_object_permissions(self.request, obj)
        return obj

    def _detail(self, dispute: Dispute, *, status_code: int = status.HTTP_200_OK):
        dispute = self.get_queryset().get(pk=dispute.pk)
        return ok(
            DisputeSerializer(dispute, context=self.get_serializer_context()).data,
            status=status_code,
        )

    def list(self, request, *args, **kwargs):
        page = self.paginate_queryset(self.filter_queryset(self.get_queryset()))
        data = DisputeListSerializer(page, many=True, context=self.get_serializer_context()).data
        return self.paginator.get_paginated_response(data, key="disputes")

    def retrieve(self, request, *args, **kwargs):
        dispute = self.get_object()
        return ok(DisputeSerializer(dispute, context=self.get_serializer_context()).data)

    def create(self, request, *args, **kwargs):
        serializer = FileDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        dispute = workflow.file_dispute(initiated_by=request.user, **data)
        return self._detail(dispute, status_code=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="communications")
    def communications(self, request, pk=None):
        dispute = self.get_object()
        serializer = DisputeCommunicationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        entry = workflow.add_communication(
            dispute,
            data["kind"],
            data["direction"],
            data.get("participant") or request.user,
            data["summary"],
            notes=data.get("notes"),
            attachments=data.get("attachments"),
        )
        return ok(DisputeCommunicationSerializer(entry).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="evidence")
    def evidence(self, request, pk=None):
        dispute = self.get_object()
        serializer = DisputeEvidenceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = workflow.add_evidence(dispute, request.user, **serializer.validated_data)
        return ok(DisputeEvidenceSerializer(item).data, status=status.HTTP_201_CREATED)

    @action(
        detail=True,
        methods=["post"],
        url_path="notes",
        permission_classes=[IsDisputeParticipant, IsPlatformAdmin],
    )
    def notes(self, request, pk=None):
        dispute = self.get_object()
        serializer = DisputeInternalNoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        note = workflow.add_internal_note(
            dispute,
            data["note"],
            request.user,
            visible_to_customer=data.get("visible_to_customer", False),
            visible_to_technician=data.get("visible_to_technician", False),
        )
        return ok(DisputeInternalNoteSerializer(note).data, status=status.HTTP_201_CREATED)

    @action(
        detail=True,
        methods=["post"],
        url_path="assign",
        permission_classes=[IsDisputeParticipant, IsPlatformAdmin],
    )
    def assign(self, request, pk=None):
        dispute = self.get_object()
        serializer = AssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = workflow.assign_dispute(
            dispute, serializer.validated_data["assigned_to"], assigned_by=request.user
        )
        return self._detail(dispute)

    @action(
        detail=True,
        methods=["post"],
        url_path="transition",
        permission_classes=[IsDisputeParticipant, IsPlatformAdmin],
    )
    def transition(self, request, pk=None):
        dispute = self.get_object()
        serializer = TransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = workflow.transition_status(
            dispute, serializer.validated_data["status"], actor=request.user
        )
        return self._detail(dispute)

    @action(
        detail=True,
        methods=["post"],
        url_path="resolve",
        permission_classes=[IsDisputeParticipant, IsPlatformAdmin],
    )
    def resolve(self, request, pk=None):
        dispute = self.get_object()
        serializer = ResolveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        dispute = workflow.resolve(
            dispute,
            data["decision"],
            data["explanation"],
            request.user,
            notes=data.get("notes"),
            final_amount=data.get("final_amount"),
            refund_amount=data.get("refund_amount"),
            compensation=data.get("compensation"),
        )
        return self._detail(dispute)

    @action(detail=True, methods=["post"], url_path="escalate")
    def escalate(self, request, pk=None):
        dispute = self.get_object()
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = workflow.escalate(dispute, serializer.validated_data["reason"], request.user)
        return self._detail(dispute)

    @action(
        detail=True,
        methods=["post"],
        url_path="close",
        permission_classes=[IsDisputeParticipant, IsPlatformAdmin],
    )
    def close(self, request, pk=None):
        dispute = workflow.close_dispute(self.get_object(), request.user)
        return self._detail(dispute)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        dispute = self.get_object()
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = workflow.cancel_dispute(
            dispute, request.user, serializer.validated_data["reason"]
        )
        return self._detail(dispute)

    @action(detail=True, methods=["post"], url_path="satisfaction")
    def satisfaction(self, request, pk=None):
        dispute = self.get_object()
        serializer = SatisfactionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = workflow.submit_satisfaction(
            dispute,
            request.user,
            serializer.validated_data["rating"],
            serializer.validated_data["feedback"],
        )
        return self._detail(dispute)

    @action(
        detail=True,
        methods=["post"],
        url_path="follow-ups",
        permission_classes=[IsDisputeParticipant, IsPlatformAdmin],
    )
    def follow_ups(self, request, pk=None):
        dispute = self.get_object()
        serializer = DisputeFollowUpActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        item = workflow.add_follow_up_action(
            dispute,
            data["action"],
            assigned_to=data.get("assigned_to"),
            due_date=data.get("due_date"),
            notes=data.get("notes", ""),
        )
        return ok(DisputeFollowUpActionSerializer(item).data, status=status.HTTP_201_CREATED)

    @action(
        detail=True,
        methods=["post"],
        url_path=r"follow-ups/(?P<follow_up_id>\d+)/complete",
        permission_classes=[IsDisputeParticipant, IsPlatformAdmin],
    )
    def complete_follow_up(self, request, pk=None, follow_up_id=None):
        dispute = self.get_object()
        item = get_object_or_404(DisputeFollowUpAction, pk=follow_up_id, dispute=dispute)
        item = workflow.complete_follow_up_action(item, notes=request.data.get("notes"))
        return ok(DisputeFollowUpActionSerializer(item).data)

    @action(
        detail=True,
        methods=["post"],
        url_path="related",
        permission_classes=[IsDisputeParticipant, IsPlatformAdmin],
    )
    def related(self, request, pk=None):
        dispute = self.get_object()
        serializer = RelatedDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        workflow.link_related_dispute(dispute, serializer.validated_data["dispute"])
        return self._detail(dispute)

    @action(
        detail=True,
        methods=["post"],
        url_path="tags",
        permission_classes=[IsDisputeParticipant, IsPlatformAdmin],
    )
    def tags(self, request, pk=None):
        dispute = self.get_object()
        serializer = TagsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        tags = workflow.add_tags(dispute, serializer.validated_data["tags"])
        return ok({"tags": tags})

    @action(
        detail=False,
        methods=["get"],
        url_path="stats",
        permission_classes=[IsPlatformAdmin],
    )
    def stats(self, request):
        serializer = StatsQuerySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        result = get_dispute_stats(
            start_date=_day_bound(data.get("start"), time.min),
            end_date=_day_bound(data.get("end"), time.max),
        )
        result["total_refund_amount"] = _money(result["total_refund_amount"])
        logger.info("disputes: stats requested", extra={"user_id": request.user.id})
        return ok(result)
