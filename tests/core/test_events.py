"""
Unit tests for the event bus.
"""

from unittest.mock import AsyncMock

import pytest

from school_sms.core.events import CHANNEL, Event, EventBus, EventType


class TestSubscriberFiltering:
    """Audience and recipient matching."""

    def test_signup_reaches_admins_only(self):
        bus = EventBus()
        admin = bus.subscribe("a1", "admin")
        teacher = bus.subscribe("t1", "teacher")

        delivered = bus.dispatch(
            Event(EventType.USER_SIGNUP, {"user_id": "u1"}, audience=frozenset({"admin"}))
        )

        assert delivered == 1
        assert admin.queue.qsize() == 1
        assert teacher.queue.empty()

    def test_recipients_narrow_the_audience(self):
        bus = EventBus()
        owner = bus.subscribe("t1", "teacher")
        other = bus.subscribe("t2", "teacher")

        bus.dispatch(
            Event(
                EventType.SUBMISSION_CREATED,
                {"submission_id": "s1"},
                audience=frozenset({"teacher"}),
                recipients=frozenset({"t1"}),
            )
        )

        assert owner.queue.qsize() == 1
        assert other.queue.empty()

    def test_heartbeat_reaches_everyone(self):
        bus = EventBus()
        subscribers = [bus.subscribe("s1", "student"), bus.subscribe("a1", "admin")]

        assert bus.dispatch(bus.create_heartbeat_event()) == 2
        assert all(s.queue.qsize() == 1 for s in subscribers)

    def test_unsubscribe(self):
        bus = EventBus()
        subscriber = bus.subscribe("a1", "admin")
        bus.unsubscribe(subscriber.id)
        bus.unsubscribe(subscriber.id)
        assert bus.subscriber_count == 0

    def test_full_queue_drops_event(self, monkeypatch):
        monkeypatch.setattr("school_sms.core.events.SUBSCRIBER_QUEUE_SIZE", 1)
        bus = EventBus()
        slow = bus.subscribe("a1", "admin")
        event = Event(EventType.USER_SIGNUP, {}, audience=frozenset({"admin"}))

        assert bus.dispatch(event) == 1
        assert bus.dispatch(event) == 0
        assert slow.queue.qsize() == 1


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_user_signup_dispatches_locally(self):
        bus = EventBus()
        admin = bus.subscribe("a1", "admin")

        await bus.publish_user_signup("u1", "Amy", "amy@school.test", "teacher")

        event = admin.queue.get_nowait()
        assert event.event_type == EventType.USER_SIGNUP
        assert event.data["email"] == "amy@school.test"
        assert event.data["role"] == "teacher"

    @pytest.mark.asyncio
    async def test_publish_submission_created_targets_teacher(self):
        bus = EventBus()
        teacher = bus.subscribe("teacher-user", "teacher")
        admin = bus.subscribe("a1", "admin")

        await bus.publish_submission_created("sub1", "asg1", "student-user", "teacher-user")

        event = teacher.queue.get_nowait()
        assert event.data == {
            "submission_id": "sub1",
            "assignment_id": "asg1",
            "student_id": "student-user",
            "timestamp": event.data["timestamp"],
        }
        assert admin.queue.empty()

    @pytest.mark.asyncio
    async def test_publish_goes_through_redis_when_relay_running(self):
        bus = EventBus()
        redis = AsyncMock()
        bus._redis = redis
        bus._relay_task = object()

        await bus.publish(Event(EventType.USER_SIGNUP, {"x": 1}, audience=frozenset({"admin"})))

        redis.publish.assert_awaited_once()
        channel, payload = redis.publish.await_args.args
        assert channel == CHANNEL
        assert Event.from_json(payload).data == {"x": 1}

    @pytest.mark.asyncio
    async def test_publish_failure_is_swallowed(self):
        """A broken broker never fails the publishing operation."""
        bus = EventBus()
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")
        bus._redis = redis
        bus._relay_task = object()

        await bus.publish(Event(EventType.USER_SIGNUP, {}, audience=frozenset({"admin"})))


class TestEventSerialization:
    def test_json_round_trip_keeps_targeting(self):
        event = Event(
            EventType.SUBMISSION_CREATED,
            {"submission_id": "s1"},
            audience=frozenset({"teacher"}),
            recipients=frozenset({"t1"}),
        )
        restored = Event.from_json(event.to_json())
        assert restored == event

    def test_broadcast_recipients_stay_none(self):
        event = Event(EventType.USER_SIGNUP, {}, audience=frozenset({"admin"}))
        assert Event.from_json(event.to_json()).recipients is None

    def test_to_sse(self):
        event = Event(EventType.HEARTBEAT, {"timestamp": "t"})
        assert event.to_sse() == 'event: heartbeat\ndata: {"timestamp": "t"}\n\n'
