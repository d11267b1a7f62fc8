"""Stage events: channel routing, payload shape, fire-and-forget delivery."""
import json

import pytest
import redis

from stage_engine.services.stage_events import (
    StageEventPublisher,
    StageEventType,
    get_stage_event_channel,
    publish_stage_event,
    read_stage_events,
    serialize_stage_event,
)


@pytest.fixture
def publisher(redis_client):
    return StageEventPublisher(client=redis_client)


def test_channel_format():
    assert get_stage_event_channel(7) == "stage:events:7"


def test_serialized_payload():
    payload = json.loads(serialize_stage_event(3, StageEventType.matches_updated, {"match_count": 6}))
    assert payload["stage_id"] == 3
    assert payload["type"] == "matches.updated"
    assert payload["data"] == {"match_count": 6}
    assert isinstance(payload["timestamp"], int)


def test_publish_reaches_subscriber(publisher):
    subscription = publisher.subscribe(3)

    delivered = publisher.publish(3, StageEventType.matches_updated, {"match_count": 6})

    assert delivered == 1
    events = read_stage_events(subscription)
    assert [e["type"] for e in events] == ["matches.updated"]
    assert events[0]["data"] == {"match_count": 6}
    subscription.close()


def test_only_matching_stage_receives(publisher):
    one = publisher.subscribe(1)
    two = publisher.subscribe(2)

    publisher.publish(1, StageEventType.leaderboard_updated)

    assert len(read_stage_events(one)) == 1
    assert read_stage_events(two) == []


def test_no_subscribers(publisher):
    assert publisher.publish(4, StageEventType.stage_updated) == 0


def test_unsubscribed_channel_stops_receiving(publisher):
    subscription = publisher.subscribe(4)
    subscription.unsubscribe(get_stage_event_channel(4))
    read_stage_events(subscription)

    assert publisher.publish(4, StageEventType.stage_updated) == 0
    assert read_stage_events(subscription) == []


def test_invalid_event_type_is_swallowed(publisher):
    assert publisher.publish(1, "not.a.type") == 0


def test_redis_failure_is_swallowed():
    class BrokenRedis:
        def publish(self, channel, message):
            raise redis.ConnectionError("redis down")

    assert StageEventPublisher(client=BrokenRedis()).publish(1, StageEventType.stage_updated) == 0


def test_module_publish_uses_singleton(events):
    events.watch(9)
    publish_stage_event(9, StageEventType.leaderboard_updated)
    assert events.types() == ["leaderboard.updated"]
