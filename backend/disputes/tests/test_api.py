from __future__ import annotations

import pytest
from rest_framework.test import APIClient

from disputes import workflow
from disputes.models import Dispute

pytestmark = pytest.mark.django_db


def _auth_client(user):
    client = APIClient()
    client.force_authenticate(user)
    return client


def _file_payload(booking, **overrides):
    payload = {
        "booking": booking.id,
        "category": Dispute.Category.SERVICE_QUALITY,
        "title": "Heater still broken",
        "description": "The technician left before testing the heater.",
        "requested_resolution_kind": Dispute.ResolutionKind.REWORK,
    }
    payload.update(overrides)
    return payload


def test_file_dispute(booking, customer_user):
    client = _auth_client(customer_user)

    resp = client.post("/api/disputes/", _file_payload(booking), format="json")

    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["dispute_id"].startswith("DIS-")
    assert data["status"] == "open"
    assert data["initiator_role"] == "customer"
    assert data["resolution"] is None
    assert data["age_in_days"] == 0
    assert data["time_to_resolution"] is None
    assert data["requested_resolution"]["kind"] == "rework"


def test_duplicate_dispute_protection(booking, customer_user, technician_user):
    _auth_client(customer_user).post("/api/disputes/", _file_payload(booking), format="json")

    resp = _auth_client(technician_user).post(
        "/api/disputes/", _file_payload(booking), format="json"
    )

    assert resp.status_code == 409
    body = resp.json()
    assert body["success"] is False
    assert "active dispute" in body["detail"]


def test_outsider_cannot_file_or_view(booking, dispute, other_user):
    client = _auth_client(other_user)
    assert client.post("/api/disputes/", _file_payload(booking), format="json").status_code == 403
    assert client.get(f"/api/disputes/{dispute.id}/").status_code == 404
    assert client.get("/api/disputes/").json()["data"]["disputes"] == []


def test_invalid_payload(booking, customer_user):
    resp = _auth_client(customer_user).post(
        "/api/disputes/",
        _file_payload(booking, category="weather", title="x" * 201),
        format="json",
    )
    assert resp.status_code == 400
    body = resp.json()
    assert "category" in body
    assert "title" in body


def test_list_filters_and_paginates(dispute_factory, booking_factory, customer_user):
    dispute_factory(booking=booking_factory(), category=Dispute.Category.PRICING)
    dispute_factory(booking=booking_factory(), category=Dispute.Category.TIMING)
    dispute_factory(booking=booking_factory(), category=Dispute.Category.PRICING)
    client = _auth_client(customer_user)

    resp = client.get("/api/disputes/", {"category": "pricing", "limit": 1})

    data = resp.json()["data"]
    assert len(data["disputes"]) == 1
    assert data["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}


def test_internal_notes_filtered_by_viewer(dispute, admin_user, customer_user, technician_user):
    workflow.add_internal_note(dispute, "staff only", admin_user)
    workflow.add_internal_note(dispute, "shared", admin_user, visible_to_customer=True)

    def notes_for(user):
        resp = _auth_client(user).get(f"/api/disputes/{dispute.id}/")
        return [n["note"] for n in resp.json()["data"]["internal_notes"]]

    assert notes_for(admin_user) == ["staff only", "shared"]
    assert notes_for(customer_user) == ["shared"]
    assert notes_for(technician_user) == []


def test_admin_only_actions(dispute, customer_user):
    client = _auth_client(customer_user)
    url = f"/api/disputes/{dispute.id}"
    assert client.post(f"{url}/resolve/", {"decision": "no_action", "explanation": "x"}).status_code == 403
    assert client.post(f"{url}/notes/", {"note": "hi"}).status_code == 403
    assert client.post(f"{url}/transition/", {"status": "mediation"}).status_code == 403
    assert client.get("/api/disputes/stats/").status_code == 403


def test_resolve_and_rate(dispute, admin_user, customer_user):
    admin = _auth_client(admin_user)
    url = f"/api/disputes/{dispute.id}"

    resp = admin.post(
        f"{url}/resolve/",
        {"decision": "customer_favor", "explanation": "Refund issued.", "refund_amount": "50.00"},
        format="json",
    )
    assert resp.status_code == 200
    resolution = resp.json()["data"]["resolution"]
    assert resolution["refund_amount"] == "50.00"
    assert resolution["decision"] == "customer_favor"
    assert resolution["resolved_at"]

    again = admin.post(
        f"{url}/resolve/",
        {"decision": "no_action", "explanation": "again"},
        format="json",
    )
    assert again.status_code == 409

    rated = _auth_client(customer_user).post(
        f"{url}/satisfaction/", {"rating": 5, "feedback": "Thanks"}, format="json"
    )
    assert rated.status_code == 200
    assert rated.json()["data"]["satisfaction"]["rating"] == 5


def test_transition_and_escalate(dispute, admin_user, technician_user):
    admin = _auth_client(admin_user)
    url = f"/api/disputes/{dispute.id}"

    assert admin.post(f"{url}/transition/", {"status": "investigating"}).json()["data"]["status"] == "investigating"
    bad = admin.post(f"{url}/transition/", {"status": "under_review"})
    assert bad.status_code == 409
    assert bad.json()["success"] is False

    escalated = _auth_client(technician_user).post(f"{url}/escalate/", {"reason": "stalled"})
    assert escalated.json()["data"]["status"] == "escalated"


def test_assign_communications_evidence(dispute, admin_user, customer_user):
    admin = _auth_client(admin_user)
    url = f"/api/disputes/{dispute.id}"

    assigned = admin.post(f"{url}/assign/", {"assigned_to": admin_user.id}, format="json")
    assert assigned.json()["data"]["status"] == "under_review"
    assert assigned.json()["data"]["assigned_to"] == admin_user.id

    comm = admin.post(
        f"{url}/communications/",
        {"kind": "call", "direction": "outbound", "summary": "Spoke with customer"},
        format="json",
    )
    assert comm.status_code == 201
    assert comm.json()["data"]["participant"] == admin_user.id

    evidence = _auth_client(customer_user).post(
        f"{url}/evidence/",
        {"kind": "image", "url": "https://files.example.com/leak.jpg", "filename": "leak.jpg"},
        format="json",
    )
    assert evidence.status_code == 201

    detail = admin.get(f"{url}/").json()["data"]
    assert len(detail["communications"]) == 1
    assert detail["evidence"][0]["filename"] == "leak.jpg"


def test_follow_ups_tags_related(dispute_factory, booking_factory, admin_user):
    first = dispute_factory(booking=booking_factory())
    second = dispute_factory(booking=booking_factory())
    admin = _auth_client(admin_user)
    url = f"/api/disputes/{first.id}"

    created = admin.post(f"{url}/follow-ups/", {"action": "Call technician"}, format="json")
    assert created.status_code == 201
    follow_up_id = created.json()["data"]["id"]
    done = admin.post(f"{url}/follow-ups/{follow_up_id}/complete/", {}, format="json")
    assert done.json()["data"]["completed"] is True

    tags = admin.post(f"{url}/tags/", {"tags": ["Repeat"]}, format="json")
    assert tags.json()["data"] == {"tags": ["repeat"]}

    related = admin.post(f"{url}/related/", {"dispute": second.dispute_id}, format="json")
    assert related.json()["data"]["related_disputes"] == [second.dispute_id]


def test_cancel_and_close(dispute_factory, booking_factory, admin_user, customer_user):
    cancelled = dispute_factory(booking=booking_factory())
    resp = _auth_client(customer_user).post(
        f"/api/disputes/{cancelled.id}/cancel/", {"reason": "Fixed"}, format="json"
    )
    assert resp.json()["data"]["status"] == "cancelled"

    resolved = dispute_factory(booking=booking_factory())
    workflow.resolve(resolved, Dispute.Decision.NO_ACTION, "ok", admin_user)
    closed = _auth_client(admin_user).post(f"/api/disputes/{resolved.id}/close/")
    assert closed.json()["data"]["status"] == "closed"
    assert closed.json()["data"]["closed_at"]


def test_stats_endpoint(dispute_factory, booking_factory, admin_user):
    dispute_factory(booking=booking_factory(), category=Dispute.Category.DAMAGE)
    resp = _auth_client(admin_user).get("/api/disputes/stats/", {"start": "2000-01-01"})

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["total_disputes"] == 1
    assert data["disputes_by_category"] == ["damage"]
    assert data["total_refund_amount"] == "0.00"


def test_staff_account_has_admin_access(dispute, staff_user):
    client = _auth_client(staff_user)

    assert client.get(f"/api/disputes/{dispute.id}/").status_code == 200
    assert client.get("/api/disputes/stats/").status_code == 200
