"""
Event Bus

One publish interface and a typed subscriber registry for live notifications.

Subscribers register with their user id and role; an event reaches a
subscriber when the subscriber's role is in the event's audience and the
event either names no recipients or names that user.

Publishing is fire-and-forget. When the Redis relay is running, events go
through the Redis channel so every API process sees them; otherwise they are
dispatched to the local registry directly. Publish failures are logged and
never raised to the caller.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

CHANNEL = "school_sms:events"
SUBSCRIBER_QUEUE_SIZE = 100
HEARTBEAT_INTERVAL_SECONDS = 30


class EventType(str, Enum):
    """Types of events that can be published."""

    USER_SIGNUP = "user_signup"
    SUBMISSION_CREATED = "submission_created"
    HEARTBEAT = "heartbeat"


@dataclass
class Event:
    """An event on the bus."""

    event_type: EventType
    data: dict[str, Any]
    audience: frozenset[str] = frozenset()
    recipients: frozenset[str] | None = None

    def to_sse(self) -> str:
        """Convert to SSE format."""
        return f"event: {self.event_type.value}\ndata: {json.dumps(self.data)}\n\n"

    def to_json(self) -> str:
        return json.dumps(
            {
                "type": self.event_type.value,
                "data": self.data,
                "audience": sorted(self.audience),
                "recipients": sorted(self.recipients) if self.recipients is not None else None,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "Event":
        payload = json.loads(raw)
        recipients = payload.get("recipients")
        return cls(
            event_type=EventType(payload["type"]),
            data=payload.get("data") or {},
            audience=frozenset(payload.get("audience") or ()),
            recipients=frozenset(recipients) if recipients is not None else None,
        )


@dataclass
class Subscriber:
    """A live connection waiting for events."""

    id: str
    user_id: str
    role: str
    queue: asyncio.Queue[Event]

    @classmethod
    def create(cls, user_id: str, role: str) -> "Subscriber":
        return cls(
            id=str(uuid4()),
            user_id=str(user_id),
            role=role,
            queue=asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE),
        )

    def wants(self, event: Event) -> bool:
        if event.event_type == EventType.HEARTBEAT:
            return True
        if self.role not in event.audience:
            return False
        return event.recipients is None or self.user_id in event.recipients


@dataclass
class EventBus:
    """Process-local subscriber registry with an optional Redis relay."""

    heartbeat_interval: int = HEARTBEAT_INTERVAL_SECONDS
    _subscribers: dict[str, Subscriber] = field(default_factory=dict)
    _redis: Redis | None = None
    _relay_task: asyncio.Task | None = None

    def subscribe(self, user_id: str, role: str) -> Subscriber:
        subscriber = Subscriber.create(user_id, role)
        self._subscribers[subscriber.id] = subscriber
        logger.debug(f"Subscriber {subscriber.id} joined (user={user_id}, role={role})")
        return subscriber

    def unsubscribe(self, subscriber_id: str) -> None:
        self._subscribers.pop(subscriber_id, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def dispatch(self, event: Event) -> int:
        """
        Deliver an event to matching local subscribers.

        Returns:
            Number of subscribers that received the event
        """
        delivered = 0
        for subscriber in list(self._subscribers.values()):
            if not subscriber.wants(event):
                continue
            try:
                subscriber.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropping {event.event_type.value} for slow subscriber {subscriber.id}")
        return delivered

    async def publish(self, event: Event) -> None:
        """Publish an event. Never raises."""
        try:
            if self._redis is not None and self._relay_task is not None:
                await self._redis.publish(CHANNEL, event.to_json())
            else:
                self.dispatch(event)
        except Exception as e:
            logger.warning(f"Failed to publish {event.event_type.value} event: {e}")

    async def publish_user_signup(self, user_id: str, name: str, email: str, role: str) -> None:
        await self.publish(
            Event(
                event_type=EventType.USER_SIGNUP,
                audience=frozenset({"admin"}),
                data={
                    "user_id": str(user_id),
                    "name": name,
                    "email": email,
                    "role": role,
                    "timestamp": datetime.now(UTC).isoformat(),
                },
            )
        )

    async def publish_submission_created(
        self,
        submission_id: str,
        assignment_id: str,
        student_user_id: str,
        teacher_user_id: str,
    ) -> None:
        await self.publish(
            Event(
                event_type=EventType.SUBMISSION_CREATED,
                audience=frozenset({"teacher"}),
                recipients=frozenset({str(teacher_user_id)}),
                data={
                    "submission_id": str(submission_id),
                    "assignment_id": str(assignment_id),
                    "student_id": str(student_user_id),
                    "timestamp": datetime.now(UTC).isoformat(),
                },
            )
        )

    def create_heartbeat_event(self) -> Event:
        return Event(
            event_type=EventType.HEARTBEAT,
            data={"timestamp": datetime.now(UTC).isoformat()},
        )

    # ------------------------------------------------------------------
    # Redis relay
    # ------------------------------------------------------------------

    async def _relay(self, redis: Redis) -> None:
        pubsub = redis.pubsub()
        await pubsub.subscribe(CHANNEL)
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = Event.from_json(message["data"])
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Ignoring malformed event on {CHANNEL}: {e}")
                    continue
                self.dispatch(event)
        finally:
            await pubsub.unsubscribe(CHANNEL)
            await pubsub.aclose()

    def start_relay(self, redis: Redis) -> None:
        """Start fanning Redis channel messages into the local registry."""
        if self._relay_task is not None:
            return
        self._redis = redis
        self._relay_task = asyncio.create_task(self._relay(redis), name="event-relay")
        self._relay_task.add_done_callback(self._on_relay_done)
        logger.info(f"Event relay subscribed to {CHANNEL}")

    def _on_relay_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task is not self._relay_task:
            return
        # Relay died: fall back to local dispatch
        logger.error(f"Event relay stopped unexpectedly: {task.exception()}")
        self._relay_task = None
        self._redis = None

    async def stop_relay(self) -> None:
        task, self._relay_task = self._relay_task, None
        self._redis = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Event relay stopped")


event_bus = EventBus()


def get_event_bus() -> EventBus:
    """FastAPI dependency returning the process event bus."""
    return event_bus
