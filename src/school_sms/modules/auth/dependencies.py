"""FastAPI dependencies for the auth module."""

from fastapi import Depends

from school_sms.core.email import ResendNotifier, get_notifier
from school_sms.core.events import EventBus, get_event_bus
from school_sms.modules.auth.service import AuthService
from school_sms.modules.users.repository import UserRepository, get_user_repository


async def get_auth_service(
    store: UserRepository = Depends(get_user_repository),
    notifier: ResendNotifier = Depends(get_notifier),
    events: EventBus = Depends(get_event_bus),
) -> AuthService:
    return AuthService(store, notifier, events)
