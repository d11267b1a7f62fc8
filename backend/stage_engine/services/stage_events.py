"""Stage event publisher.

Redis pub/sub for live stage views. Every published event goes to the channel
`stage:events:<stage_id>` as a JSON payload, so subscribers in any worker
process receive it.

Delivery is fire-and-forget: a Redis failure is logged and skipped,
never surfaced to the operation that published the event.
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import redis
from redis.client import PubSub

from stage_engine.redis_client import get_redis_client

logger = logging.getLogger(__name__)

STAGE_EVENT_PREFIX = "stage:events"


class StageEventType(str, Enum):
    matches_updated = "matches.updated"
    leaderboard_updated = "leaderboard.updated"
    stage_updated = "stage.updated"


def get_stage_event_channel(stage_id: int) -> str:
    return f"{STAGE_EVENT_PREFIX}:{stage_id}"


def serialize_stage_event(
    stage_id: int, event_type: StageEventType, data: Optional[Dict[str, Any]] = None
) -> str:
    """
    Payload shape:
        {"stage_id", "type", "timestamp" (epoch ms), "data"}

    Raises:
        ValueError: unknown event type
    """
    payload = {
        "stage_id": stage_id,
        "type": StageEventType(event_type).value,
        "timestamp": int(datetime.now(timezone.utc).timestamp() * 1000),
        "data": data,
    }
    return json.dumps(payload, sort_keys=True, default=str)


class StageEventPublisher:
    """Publishes stage events and opens per-stage subscriptions."""

    def __init__(self, client: Optional[redis.Redis] = None):
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis_client()
        return self._client

    def subscribe(self, stage_id: int) -> PubSub:
        """Open a PubSub subscribed to the stage channel. Caller owns closing it."""
        pubsub = self.client.pubsub()
        pubsub.subscribe(get_stage_event_channel(stage_id))
        return pubsub

    def publish(
        self,
        stage_id: int,
        event_type: StageEventType,
        data: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Publish an event to the stage channel.

        Returns:
            Number of subscribers that received the event (0 on failure)
        """
        try:
            message = serialize_stage_event(stage_id, event_type, data)
        except Exception:
            logger.exception("Failed to build stage event for stage %s", stage_id)
            return 0

        try:
            delivered = self.client.publish(get_stage_event_channel(stage_id), message)
        except Exception:
            logger.exception("Failed to publish stage event (stage=%s, type=%s)", stage_id, event_type)
            return 0

        logger.debug("Published %s for stage %s to %d subscriber(s)", event_type, stage_id, delivered)
        return delivered


def read_stage_events(pubsub: PubSub) -> List[Dict[str, Any]]:
    """Drain pending event payloads from a subscription without blocking."""
    events: List[Dict[str, Any]] = []
    while True:
        message = pubsub.get_message(timeout=0)
        if message is None:
            return events
        if message["type"] != "message":
            continue
        try:
            events.append(json.loads(message["data"]))
        except (TypeError, ValueError):
            logger.warning("Skipping malformed stage event on %s", message.get("channel"))


# Singleton instance
_stage_event_publisher: Optional[StageEventPublisher] = None


def get_stage_event_publisher() -> StageEventPublisher:
    """Get or create the singleton StageEventPublisher instance."""
    global _stage_event_publisher
    if _stage_event_publisher is None:
        _stage_event_publisher = StageEventPublisher()
    return _stage_event_publisher


def publish_stage_event(
    stage_id: int,
    event_type: StageEventType,
    data: Optional[Dict[str, Any]] = None,
) -> int:
    return get_stage_event_publisher().publish(stage_id, event_type, data)
