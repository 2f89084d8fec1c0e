"""
Attachment Schemas

Pydantic schemas for the storage endpoints.

Records are addressed by id: an assignment id, a module id or a submission
id. Uploading and recording a submission file is the exception; it is
addressed by the assignment id because the submission row is created on the
first upload.
"""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class AttachmentKind(str, Enum):
    """Kind of record that owns a file. The value is the blob path prefix."""

    ASSIGNMENT = "assignments"
    SUBMISSION = "submissions"
    MODULE = "modules"


class SignedUploadRequest(BaseModel):
    kind: AttachmentKind
    target_id: UUID
    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str | None = Field(None, max_length=255)


class SignedUploadResponse(BaseModel):
    upload_url: str
    path: str
    expires_in_seconds: int


class UploadResponse(BaseModel):
    path: str


class RecordAttachmentRequest(BaseModel):
    kind: AttachmentKind
    target_id: UUID
    path: str = Field(..., min_length=1, max_length=1024)


class RecordAttachmentResponse(BaseModel):
    owner_id: str
    path: str
    recorded: bool


class DeleteAttachmentRequest(BaseModel):
    kind: AttachmentKind
    owner_id: UUID
    path: str = Field(..., min_length=1, max_length=1024)


class SignedDownloadRequest(BaseModel):
    path: str = Field(..., min_length=1, max_length=1024)
    long_lived: bool = False


class SignedDownloadResponse(BaseModel):
    download_url: str
    expires_in_seconds: int


class MessageResponse(BaseModel):
    message: str
