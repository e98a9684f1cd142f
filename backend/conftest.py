"""Shared pytest fixtures: API client, marketplace users and bookings."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Callable

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from bookings.models import Booking

User = get_user_model()


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


def _create_user(*, username: str, role: str, **extra) -> User:
    return User.objects.create_user(
        username=username,
        password="testpass",
        email=f"{username}@example.com",
        role=role,
        **extra,
    )


@pytest.fixture
def customer_user():
    return _create_user(username="customer", role=User.Role.CUSTOMER, first_name="Casey")


@pytest.fixture
def technician_user():
    return _create_user(username="technician", role=User.Role.TECHNICIAN, first_name="Toni")


@pytest.fixture
def admin_user():
    return _create_user(username="platform-admin", role=User.Role.ADMIN, is_staff=True)


@pytest.fixture
def staff_user():
    return _create_user(username="staff", role=User.Role.CUSTOMER, is_staff=True)


@pytest.fixture
def other_user():
    return _create_user(username="other", role=User.Role.CUSTOMER)


@pytest.fixture
def booking_factory(customer_user, technician_user) -> Callable[..., Booking]:
    def _create_booking(
        *,
        customer=None,
        technician=None,
        status=Booking.Status.COMPLETED,
        **extra_fields,
    ) -> Booking:
        extra_fields.setdefault("service_type", "plumbing")
        extra_fields.setdefault("scheduled_date", timezone.now() - timedelta(days=2))
        extra_fields.setdefault("total_amount", Decimal("120.00"))
        return Booking.objects.create(
            customer=customer or customer_user,
            technician=technician or technician_user,
            status=status,
            **extra_fields,
        )

    return _create_booking


@pytest.fixture
def booking(booking_factory) -> Booking:
    return booking_factory()
