import json

import pytest

from core import redis as events


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.entries = []

    def xadd(self, key, data, maxlen=None, approximate=None):
        if self.fail:
            raise ConnectionError("redis down")
        self.entries.append((key, data, maxlen))
        return b"1-0"


@pytest.fixture
def fake_redis(settings, monkeypatch):
    settings.REALTIME_EVENTS_ENABLED = True
    client = FakeRedis()
    monkeypatch.setattr(events, "get_redis_client", lambda: client)
    return client


def test_push_event_writes_to_user_stream(fake_redis):
    entry_id = events.push_event(7, "chat:new_message", {"chat_id": 3})

    assert entry_id == "1-0"
    key, data, maxlen = fake_redis.entries[0]
    assert key == "fixitnow:events:user:7"
    assert data["type"] == "chat:new_message"
    assert json.loads(data["payload"]) == {"chat_id": 3}
    assert maxlen == events.STREAM_MAXLEN


def test_push_event_skips_when_disabled(settings, fake_redis):
    settings.REALTIME_EVENTS_ENABLED = False
    assert events.push_event(7, "chat:new_message", {}) is None
    assert fake_redis.entries == []


def test_push_event_failure_returns_none(fake_redis):
    fake_redis.fail = True
    assert events.push_event(7, "dispute:filed", {}) is None


def test_fan_out_skips_empty_ids(fake_redis):
    events.push_event_to_users([1, None, 2], "dispute:status_changed", {"status": "open"})
    assert [key for key, _, _ in fake_redis.entries] == [
        "fixitnow:events:user:1",
        "fixitnow:events:user:2",
    ]
