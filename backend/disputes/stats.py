"""Aggregate reporting over disputes."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from decimal import Decimal
from typing import Any

from django.db.models import Avg, Count, DurationField, ExpressionWrapper, F, Q, Sum

from .models import Dispute

SECONDS_PER_DAY = 24 * 60 * 60


def get_dispute_stats(
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> dict[str, Any]:
    """
    Summarize disputes created inside an optional window.

    Each bound applies on its own, so passing only ``start_date`` reports
    everything created since then.
    """
    qs = Dispute.objects.all()
    if start_date is not None:
        qs = qs.filter(created_at__gte=start_date)
    if end_date is not None:
        qs = qs.filter(created_at__lte=end_date)

    totals = qs.aggregate(
        total_disputes=Count("id"),
        open_disputes=Count("id", filter=Q(status=Dispute.Status.OPEN)),
        resolved_disputes=Count("id", filter=Q(status=Dispute.Status.RESOLVED)),
        total_refund_amount=Sum("resolution_refund_amount"),
    )

    categories = list(qs.values_list("category", flat=True))

    avg_duration = qs.filter(resolved_at__isnull=False).aggregate(
        avg=Avg(
            ExpressionWrapper(
                F("resolved_at") - F("created_at"), output_field=DurationField()
            )
        )
    )["avg"]
    avg_resolution_time = avg_duration.total_seconds() / SECONDS_PER_DAY if avg_duration else 0

    return {
        "total_disputes": totals["total_disputes"],
        "open_disputes": totals["open_disputes"],
        "resolved_disputes": totals["resolved_disputes"],
        "avg_resolution_time": avg_resolution_time,
        "disputes_by_category": categories,
        "category_counts": dict(Counter(categories)),
        "total_refund_amount": totals["total_refund_amount"] or Decimal("0"),
    }
