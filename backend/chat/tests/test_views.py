"""Tests for the chat API."""

from __future__ import annotations

import pytest
from rest_framework.test import APIClient

from chat import services
from chat.models import Conversation, Message

pytestmark = pytest.mark.django_db


def auth(user):
    client = APIClient()
    resp = client.post(
        "/api/users/token/",
        {"username": user.username, "password": "testpass"},
        format="json",
    )
    token = resp.data["access"]
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")
    return client


@pytest.fixture
def conversation(customer_user, technician_user, booking):
    return services.find_or_create_conversation([customer_user, technician_user], booking=booking)


def test_start_chat_is_find_or_create(customer_user, technician_user, booking):
    client = auth(customer_user)
    payload = {"participant_ids": [technician_user.id], "booking": booking.id}

    first = client.post("/api/chats/", payload, format="json")
    second = client.post("/api/chats/", payload, format="json")

    assert first.status_code == 200
    assert first.data["success"] is True
    assert first.data["data"]["id"] == second.data["data"]["id"]
    assert first.data["data"]["kind"] == Conversation.Kind.BOOKING
    assert first.data["data"]["participant_count"] == 2
    assert Conversation.objects.count() == 1


def test_start_chat_rejects_booking_outsiders(other_user, technician_user, booking):
    client = auth(other_user)
    resp = client.post(
        "/api/chats/",
        {"participant_ids": [technician_user.id], "booking": booking.id},
        format="json",
    )
    assert resp.status_code == 403
    assert resp.data["success"] is False


def test_start_chat_rejects_unknown_participants(customer_user):
    client = auth(customer_user)
    resp = client.post("/api/chats/", {"participant_ids": [999999]}, format="json")
    assert resp.status_code == 400


def test_list_includes_unread_count_and_pagination(conversation, customer_user, technician_user):
    services.add_message(conversation, customer_user, "Hello")
    services.add_message(conversation, customer_user, "Are you there?")

    resp = auth(technician_user).get("/api/chats/", {"page": 1, "limit": 10})

    assert resp.status_code == 200
    data = resp.data["data"]
    assert data["pagination"] == {"page": 1, "limit": 10, "total": 1, "pages": 1}
    [chat] = data["chats"]
    assert chat["unread_count"] == 2
    assert chat["participant_count"] == 2
    assert chat["last_message"]["content"] == "Are you there?"


def test_list_filters_by_status(conversation, customer_user):
    client = auth(customer_user)
    services.close_conversation(conversation, customer_user)

    assert client.get("/api/chats/").data["data"]["chats"] == []
    closed = client.get("/api/chats/", {"status": "closed"}).data["data"]["chats"]
    assert [c["id"] for c in closed] == [conversation.id]
    assert client.get("/api/chats/", {"status": "bogus"}).status_code == 400


def test_send_and_read_flow(conversation, customer_user, technician_user):
    customer = auth(customer_user)
    technician = auth(technician_user)

    sent = customer.post(
        f"/api/chats/{conversation.id}/messages/", {"content": "Hello"}, format="json"
    )
    assert sent.status_code == 201
    assert sent.data["data"]["content"] == "Hello"
    assert sent.data["data"]["sender_role"] == "customer"

    detail = technician.get(f"/api/chats/{conversation.id}/")
    assert detail.data["data"]["unread_count"] == 1
    assert detail.data["data"]["messages"][-1]["is_read"] is False

    read = technician.post(f"/api/chats/{conversation.id}/read/")
    assert read.data["data"] == {"marked_read": 1, "unread_count": 0}

    detail = customer.get(f"/api/chats/{conversation.id}/")
    last = detail.data["data"]["messages"][-1]
    assert last["is_read"] is True
    assert [r["user_id"] for r in last["read_by"]] == [technician_user.id]


def test_send_rejected_when_closed(conversation, customer_user):
    services.close_conversation(conversation, customer_user)
    resp = auth(customer_user).post(
        f"/api/chats/{conversation.id}/messages/", {"content": "hi"}, format="json"
    )
    assert resp.status_code == 400
    assert resp.data["detail"] == "Chat is closed."


def test_send_rejects_overlong_content(conversation, customer_user):
    resp = auth(customer_user).post(
        f"/api/chats/{conversation.id}/messages/", {"content": "x" * 1001}, format="json"
    )
    assert resp.status_code == 400
    assert "content" in resp.data


def test_outsider_cannot_see_conversation(conversation, other_user):
    assert auth(other_user).get(f"/api/chats/{conversation.id}/").status_code == 404


def test_edit_and_delete_message(conversation, customer_user, technician_user):
    msg = services.add_message(conversation, customer_user, "arrive at 3")
    client = auth(customer_user)
    url = f"/api/chats/{conversation.id}/messages/{msg.id}/"

    edited = client.patch(url, {"content": "arrive at 4"}, format="json")
    assert edited.status_code == 200
    assert edited.data["data"]["is_edited"] is True

    forbidden = auth(technician_user).delete(url)
    assert forbidden.status_code == 403

    deleted = client.delete(url)
    assert deleted.data["data"]["is_deleted"] is True
    assert deleted.data["data"]["content"] == ""
    assert Message.objects.get(pk=msg.pk).content == "arrive at 4"


def test_pin_endpoint(conversation, customer_user):
    msg = services.add_message(conversation, customer_user, "gate code 1234")
    client = auth(customer_user)
    url = f"/api/chats/{conversation.id}/messages/{msg.id}/pin/"

    assert client.post(url).status_code == 201
    detail = client.get(f"/api/chats/{conversation.id}/")
    assert [p["message"]["id"] for p in detail.data["data"]["pinned_messages"]] == [msg.id]
    assert client.delete(url).data["data"] == {"unpinned": True}


def test_close_reopen_archive(conversation, customer_user):
    client = auth(customer_user)
    assert client.post(f"/api/chats/{conversation.id}/close/").data["data"]["status"] == "closed"
    assert client.post(f"/api/chats/{conversation.id}/reopen/").data["data"]["status"] == "active"
    assert client.post(f"/api/chats/{conversation.id}/archive/").data["data"]["status"] == "archived"

    conflict = client.post(f"/api/chats/{conversation.id}/reopen/")
    assert conflict.status_code == 409
    assert conflict.data["success"] is False


def test_moderate_requires_admin(conversation, customer_user, admin_user):
    url = f"/api/chats/{conversation.id}/moderate/"
    assert auth(customer_user).post(url, {"reason": "spam"}, format="json").status_code == 403

    resp = auth(admin_user).post(url, {"reason": "spam"}, format="json")
    assert resp.status_code == 200
    assert resp.data["data"]["is_moderated"] is True
