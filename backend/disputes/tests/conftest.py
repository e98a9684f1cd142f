"""Fixtures for dispute tests."""

from __future__ import annotations

from typing import Callable

import pytest

from disputes import workflow
from disputes.models import Dispute


@pytest.fixture
def dispute_factory(booking_factory, customer_user) -> Callable[..., Dispute]:
    def _file(*, booking=None, initiated_by=None, **overrides) -> Dispute:
        booking = booking or booking_factory()
        fields = {
            "category": Dispute.Category.SERVICE_QUALITY,
            "title": "Leak came back the next day",
            "description": "The kitchen sink started leaking again within 24 hours.",
            "requested_resolution_kind": Dispute.ResolutionKind.REFUND,
        }
        fields.update(overrides)
        return workflow.file_dispute(
            booking=booking,
            initiated_by=initiated_by or customer_user,
            **fields,
        )

    return _file


@pytest.fixture
def dispute(dispute_factory) -> Dispute:
    return dispute_factory()
