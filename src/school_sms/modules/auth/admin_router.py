"""
Teacher Approval Admin Router

Endpoints:
- GET  /admin/teachers/pending - Teachers waiting for approval
- POST /admin/teachers/{user_id}/approve - Activate a teacher
- POST /admin/teachers/{user_id}/reject - Delete a pending teacher profile

All endpoints require the admin role.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from school_sms.core.auth import CurrentUser, require_roles
from school_sms.core.exceptions import ServiceError, to_http_exception
from school_sms.modules.auth.dependencies import get_auth_service
from school_sms.modules.auth.schemas import (
    MessageResponse,
    PendingTeacherListResponse,
    UserResponse,
)
from school_sms.modules.auth.service import AuthService
from school_sms.modules.users.models import UserRole

logger = logging.getLogger(__name__)

router = APIRouter()

require_admin = require_roles(UserRole.ADMIN.value)


@router.get("/pending", response_model=PendingTeacherListResponse, summary="Pending Teachers")
async def list_pending_teachers(
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> PendingTeacherListResponse:
    teachers = await service.list_pending_teachers()
    return PendingTeacherListResponse(
        teachers=[UserResponse.model_validate(t) for t in teachers],
        total=len(teachers),
    )


@router.post("/{user_id}/approve", response_model=MessageResponse, summary="Approve Teacher")
async def approve_teacher(
    user_id: UUID,
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """
    Approve a pending teacher.

    Raises:
        HTTPException 404: No teacher profile for the user
    """
    try:
        await service.approve_teacher(str(user_id))
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error approving teacher {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred. Please try again later.",
            },
        ) from e

    logger.info(f"Admin {admin.id} approved teacher {user_id}")
    return MessageResponse(message="Teacher approved.")


@router.post("/{user_id}/reject", response_model=MessageResponse, summary="Reject Teacher")
async def reject_teacher(
    user_id: UUID,
    admin: CurrentUser = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    try:
        await service.reject_teacher(str(user_id))
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error rejecting teacher {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred. Please try again later.",
            },
        ) from e

    logger.info(f"Admin {admin.id} rejected teacher {user_id}")
    return MessageResponse(message="Teacher rejected.")
