from fastapi import APIRouter

from school_sms.modules.attachments import router as storage_router
from school_sms.modules.auth import admin_router as admin_teachers_router
from school_sms.modules.auth import router as auth_router
from school_sms.modules.notifications import router as notifications_router

api_router = APIRouter()

api_router.include_router(auth_router, prefix="/auth", tags=["Authentication"])

api_router.include_router(
    admin_teachers_router,
    prefix="/admin/teachers",
    tags=["Admin - Teachers"],
)

api_router.include_router(storage_router, prefix="/storage", tags=["Storage"])

api_router.include_router(
    notifications_router, prefix="/notifications", tags=["Notifications"]
)
