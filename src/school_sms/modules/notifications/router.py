"""Live notification stream (Server-Sent Events)."""

import asyncio
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from school_sms.core.auth import CurrentUser, require_roles
from school_sms.core.events import EventBus, get_event_bus
from school_sms.modules.users.models import UserRole

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/stream")
async def notification_stream(
    user: CurrentUser = Depends(require_roles(UserRole.ADMIN.value, UserRole.TEACHER.value)),
    event_bus: EventBus = Depends(get_event_bus),
) -> StreamingResponse:
    """
    Subscribe to live notifications.

    Admins receive user_signup events; teachers receive submission_created
    events for their own assignments. A heartbeat is sent every 30 seconds
    to keep the connection alive.
    """
    subscriber = event_bus.subscribe(user.id, user.role)
    logger.info(f"Notification stream opened for user {user.id} ({user.role})")

    async def generate() -> AsyncGenerator[str, None]:
        try:
            while True:
                try:
                    event = await asyncio.wait_for(
                        subscriber.queue.get(),
                        timeout=event_bus.heartbeat_interval,
                    )
                    yield event.to_sse()
                except TimeoutError:
                    yield event_bus.create_heartbeat_event().to_sse()
        finally:
            event_bus.unsubscribe(subscriber.id)
            logger.info(f"Notification stream closed for user {user.id}")

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
