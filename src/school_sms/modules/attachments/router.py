"""
Storage Router

Endpoints:
- POST   /storage/signed-upload - Signed upload URL for a new file
- POST   /storage/upload - Upload through the server (multipart)
- POST   /storage/record - Record an uploaded file on its record
- POST   /storage/delete - Delete one file
- POST   /storage/signed-download - Signed read URL
- DELETE /storage/modules/{module_id}/files - Delete all files of a module

All endpoints require authentication; ownership is checked per record.
"""

import logging
import os
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from school_sms.core.auth import CurrentUser, get_current_user
from school_sms.core.database import get_db
from school_sms.core.events import EventBus, get_event_bus
from school_sms.core.exceptions import ServiceError, to_http_exception
from school_sms.core.storage import get_blob_store
from school_sms.modules.attachments.schemas import (
    AttachmentKind,
    DeleteAttachmentRequest,
    MessageResponse,
    RecordAttachmentRequest,
    RecordAttachmentResponse,
    SignedDownloadRequest,
    SignedDownloadResponse,
    SignedUploadRequest,
    SignedUploadResponse,
    UploadResponse,
)
from school_sms.modules.attachments.service import AttachmentLedger

logger = logging.getLogger(__name__)

router = APIRouter()

# Larger files go straight to the blob store through a signed upload URL
MAX_UPLOAD_BYTES = 100 * 1024 * 1024


async def get_attachment_ledger(
    db: AsyncSession = Depends(get_db),
    events: EventBus = Depends(get_event_bus),
) -> AttachmentLedger:
    try:
        blob_store = get_blob_store()
    except ServiceError as e:
        raise to_http_exception(e) from e
    return AttachmentLedger(db, blob_store, events)


def _bad_request(e: ValueError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": "INVALID_REQUEST", "message": str(e)},
    )


def _upload_size(file: UploadFile) -> int:
    if file.size is not None:
        return file.size
    # The multipart parser spools the body to a temporary file
    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(0)
    return size


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.exception(f"Unexpected error {action}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


@router.post("/signed-upload", response_model=SignedUploadResponse, summary="Signed Upload URL")
async def create_signed_upload(
    data: SignedUploadRequest,
    user: CurrentUser = Depends(get_current_user),
    ledger: AttachmentLedger = Depends(get_attachment_ledger),
) -> SignedUploadResponse:
    """
    Get a 10-minute URL to PUT a file to, and the path to record afterwards.

    For submissions, target_id is the assignment id.
    """
    try:
        signed = await ledger.prepare_upload(
            data.kind, str(data.target_id), data.filename, user, data.content_type
        )
    except ServiceError as e:
        raise to_http_exception(e) from e
    except ValueError as e:
        raise _bad_request(e) from e
    except Exception as e:
        raise _internal_error("creating signed upload URL", e) from e

    return SignedUploadResponse(
        upload_url=signed.url,
        path=signed.path,
        expires_in_seconds=signed.expires_in_seconds,
    )


@router.post("/upload", response_model=UploadResponse, summary="Upload File")
async def upload_file(
    kind: AttachmentKind = Form(...),
    target_id: UUID = Form(...),
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
    ledger: AttachmentLedger = Depends(get_attachment_ledger),
) -> UploadResponse:
    """
    Upload a file through the server. Files over 100 MB must use a signed
    upload URL instead.
    """
    if _upload_size(file) > MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail={
                "error": "FILE_TOO_LARGE",
                "message": "File exceeds the 100 MB limit. Use a signed upload URL.",
            },
        )

    try:
        path = await ledger.upload_file(
            kind,
            str(target_id),
            file.filename or "upload",
            file.file,
            user,
            content_type=file.content_type,
        )
    except ServiceError as e:
        raise to_http_exception(e) from e
    except ValueError as e:
        raise _bad_request(e) from e
    except Exception as e:
        raise _internal_error("uploading file", e) from e

    return UploadResponse(path=path)


@router.post("/record", response_model=RecordAttachmentResponse, summary="Record Uploaded File")
async def record_attachment(
    data: RecordAttachmentRequest,
    user: CurrentUser = Depends(get_current_user),
    ledger: AttachmentLedger = Depends(get_attachment_ledger),
) -> RecordAttachmentResponse:
    """
    Attach an uploaded file to its record.

    Recording the same path twice is harmless; the second call reports
    recorded=false.
    """
    try:
        if data.kind == AttachmentKind.SUBMISSION:
            owner_id, recorded = await ledger.record_submission(
                str(data.target_id), data.path, user
            )
        else:
            owner_id = str(data.target_id)
            recorded = await ledger.record_attachment(data.kind, owner_id, data.path, user)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("recording attachment", e) from e

    return RecordAttachmentResponse(owner_id=owner_id, path=data.path, recorded=recorded)


@router.post("/delete", response_model=MessageResponse, summary="Delete File")
async def delete_attachment(
    data: DeleteAttachmentRequest,
    user: CurrentUser = Depends(get_current_user),
    ledger: AttachmentLedger = Depends(get_attachment_ledger),
) -> MessageResponse:
    try:
        await ledger.delete_attachment(data.kind, str(data.owner_id), data.path, user)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("deleting attachment", e) from e

    return MessageResponse(message="File deleted.")


@router.post(
    "/signed-download", response_model=SignedDownloadResponse, summary="Signed Download URL"
)
async def create_signed_download(
    data: SignedDownloadRequest,
    user: CurrentUser = Depends(get_current_user),
    ledger: AttachmentLedger = Depends(get_attachment_ledger),
) -> SignedDownloadResponse:
    try:
        await ledger.authorize_download(data.path, user)
        signed = await ledger.create_signed_download_url(data.path, long_lived=data.long_lived)
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("creating signed download URL", e) from e

    return SignedDownloadResponse(
        download_url=signed.url, expires_in_seconds=signed.expires_in_seconds
    )


@router.delete(
    "/modules/{module_id}/files", response_model=MessageResponse, summary="Delete Module Files"
)
async def delete_module_files(
    module_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    ledger: AttachmentLedger = Depends(get_attachment_ledger),
) -> MessageResponse:
    """
    Delete every file of a module.

    Raises:
        HTTPException 503: The blob store could not delete the files; the
            module keeps its file list so the call can be retried
    """
    try:
        deleted = await ledger.delete_all_attachments(
            AttachmentKind.MODULE, str(module_id), user
        )
    except ServiceError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        raise _internal_error("deleting module files", e) from e

    return MessageResponse(message=f"Deleted {deleted} files.")
