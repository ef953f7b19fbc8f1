"""
Log Relay

Subscription groups keyed by deployment id. Celery workers publish through Redis
(LogPublisher); the API process listens on the Redis channels (relay_listener) and
broadcasts to the WebSocket subscribers currently joined to each group. Nothing is
persisted: a message with no connected subscriber is dropped.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional, Protocol, Set

import redis

from app.database.redis_client import RedisClient

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "logs:"

EVENT_JOINED_ROOM = "joinedRoom"
EVENT_LOG_MESSAGE = "logMessage"
EVENT_DEPLOYMENT_DONE = "deploymentDone"


class Subscriber(Protocol):
    async def send_json(self, data: Any) -> None: ...


def channel_for(deployment_id: str) -> str:
    return f"{CHANNEL_PREFIX}{deployment_id}"


def event_frame(event: str, data: Any) -> Dict[str, Any]:
    return {"event": event, "data": data}


class LogRelay:
    def __init__(self):
        self._groups: Dict[str, Set[Subscriber]] = {}

    def join(self, deployment_id: str, subscriber: Subscriber) -> None:
        self._groups.setdefault(deployment_id, set()).add(subscriber)
        logger.info(f"Subscriber joined group {deployment_id} ({len(self._groups[deployment_id])} total)")

    def leave(self, subscriber: Subscriber) -> None:
        for deployment_id in list(self._groups):
            members = self._groups[deployment_id]
            members.discard(subscriber)
            if not members:
                del self._groups[deployment_id]

    def subscriber_count(self, deployment_id: str) -> int:
        return len(self._groups.get(deployment_id, ()))

    async def broadcast(self, deployment_id: str, event: str, data: Any) -> int:
        """Send to every current subscriber of the group. Returns how many received it."""
        members = list(self._groups.get(deployment_id, ()))
        delivered = 0
        for subscriber in members:
            try:
                await subscriber.send_json(event_frame(event, data))
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping subscriber of {deployment_id}: {e}")
                self.leave(subscriber)
        return delivered

    async def send_log(self, deployment_id: str, text: str) -> int:
        return await self.broadcast(deployment_id, EVENT_LOG_MESSAGE, text)

    async def send_done(self, deployment_id: str, url: str) -> int:
        return await self.broadcast(deployment_id, EVENT_DEPLOYMENT_DONE, url)


log_relay = LogRelay()


class LogPublisher:
    """Worker-side publisher. Publishing failures are logged, never raised."""

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis = redis_client or RedisClient.get_client()

    def _publish(self, deployment_id: str, event: str, data: Any) -> None:
        try:
            self.redis.publish(channel_for(deployment_id), json.dumps(event_frame(event, data)))
        except Exception as e:
            logger.warning(f"[{deployment_id}] Could not publish {event}: {e}")

    def publish_log(self, deployment_id: str, text: str) -> None:
        self._publish(deployment_id, EVENT_LOG_MESSAGE, text)

    def publish_done(self, deployment_id: str, url: str) -> None:
        self._publish(deployment_id, EVENT_DEPLOYMENT_DONE, url)


async def dispatch_message(relay: LogRelay, message: Dict[str, Any]) -> None:
    """Forward one Redis pub/sub message into the relay."""
    if message.get("type") != "pmessage":
        return
    channel = message.get("channel") or ""
    deployment_id = channel[len(CHANNEL_PREFIX):]
    try:
        frame = json.loads(message.get("data") or "")
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed log frame on {channel}")
        return
    await relay.broadcast(deployment_id, frame.get("event", EVENT_LOG_MESSAGE), frame.get("data"))


async def relay_listener(relay: LogRelay = log_relay) -> None:
    """Background task of the API process: Redis channels -> relay groups."""
    while True:
        pubsub = RedisClient.get_async_client().pubsub()
        try:
            await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
            logger.info("Log relay listener subscribed")
            async for message in pubsub.listen():
                await dispatch_message(relay, message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Log relay listener error: {e}")
            await asyncio.sleep(5)
        finally:
            await pubsub.aclose()
