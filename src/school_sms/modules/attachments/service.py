"""
Attachment Ledger

Links domain records (assignments, submissions, modules) to files in the
blob store. The ledger never holds file bytes; it hands out signed URLs and
keeps each record's list of blob paths in step with the store.

Upload flow:
1. Client asks for a signed upload URL; the ledger picks the path
   `{kind}/{owner ids...}/{epoch ms}_{filename}` under the record's prefix
2. Client PUTs the file directly to the blob store
3. Client records the path; only then does it appear on the record

Deletion policy:
- Deleting one file: the blob delete is best effort, the path is always
  removed from the record
- Deleting all files of a record: a blob store failure aborts the operation
  and the record keeps its list

Ownership:
- Teachers own their assignments and modules
- Students own their submissions
- Admins may act on any record
"""

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import BinaryIO, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from school_sms.core.auth import CurrentUser
from school_sms.core.config import settings
from school_sms.core.exceptions import AccessDeniedError, NotFoundError
from school_sms.core.storage import BlobStore
from school_sms.modules.attachments import repository
from school_sms.modules.attachments.repository import AttachmentOwner
from school_sms.modules.attachments.schemas import AttachmentKind
from school_sms.modules.users.models import UserRole

logger = logging.getLogger(__name__)

UPLOAD_URL_TTL = timedelta(minutes=10)
DOWNLOAD_URL_TTL = timedelta(minutes=10)
LONG_LIVED_DOWNLOAD_URL_TTL = timedelta(days=7)

_UNSAFE_FILENAME_CHARS = re.compile(r"[\\/\x00-\x1f]")


class EventPublisher(Protocol):
    async def publish_submission_created(
        self,
        submission_id: str,
        assignment_id: str,
        student_user_id: str,
        teacher_user_id: str,
    ) -> None: ...


@dataclass
class SignedUrl:
    url: str
    path: str
    expires_in_seconds: int


def _utcnow() -> datetime:
    return datetime.now(UTC)


def sanitize_filename(filename: str) -> str:
    """Strip path separators and control characters from a client filename."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", filename.strip())
    if not cleaned.strip("._"):
        raise ValueError("Filename must contain at least one letter or digit")
    return cleaned


def build_object_path(
    kind: AttachmentKind,
    owner_ids: Sequence[str],
    filename: str,
    now: datetime | None = None,
) -> str:
    """
    Build a blob path of the form `{kind}/{owner ids...}/{epoch ms}_{filename}`.

    The millisecond timestamp keeps repeated uploads of the same filename
    apart; grouping by owner lets all of a record's files go in one
    prefix delete.
    """
    if not owner_ids or any(not str(i) or "/" in str(i) for i in owner_ids):
        raise ValueError("Owner ids must be non-empty and contain no '/'")

    now = now or _utcnow()
    stamp = int(now.timestamp() * 1000)
    owners = "/".join(str(i) for i in owner_ids)
    return f"{kind.value}/{owners}/{stamp}_{sanitize_filename(filename)}"


class AttachmentLedger:
    """Attachment operations for one request's database session."""

    def __init__(
        self,
        db: AsyncSession,
        blob_store: BlobStore,
        events: EventPublisher,
        *,
        bucket: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.blob_store = blob_store
        self.events = events
        self.bucket = bucket or settings.storage_bucket
        self.clock = clock

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    async def _owned_record(
        self, kind: AttachmentKind, record_id: str, user: CurrentUser
    ) -> AttachmentOwner:
        """
        Load a record's owner and check the caller may modify it.

        Raises:
            NotFoundError: If the record does not exist
            AccessDeniedError: If the caller neither owns it nor is an admin
        """
        owner = await repository.get_owner(self.db, kind, record_id)
        if owner is None:
            raise NotFoundError(f"{kind.value.rstrip('s').capitalize()} not found.")

        if user.role != UserRole.ADMIN.value and owner.owner_user_id != user.id:
            logger.warning(f"User {user.id} denied access to {kind.value}/{record_id}")
            raise AccessDeniedError("You do not own this record.")

        return owner

    async def _submission_owner_ids(self, assignment_id: str, user: CurrentUser) -> list[str]:
        """Owner ids for a new submission file: the student, then the assignment."""
        if user.role != UserRole.STUDENT.value:
            raise AccessDeniedError("Only students can upload submissions.")
        if await repository.get_assignment_teacher_user_id(self.db, assignment_id) is None:
            raise NotFoundError("Assignment not found.")
        return [user.id, assignment_id]

    async def _upload_owner_ids(
        self, kind: AttachmentKind, target_id: str, user: CurrentUser
    ) -> list[str]:
        if kind == AttachmentKind.SUBMISSION:
            return await self._submission_owner_ids(target_id, user)
        owner = await self._owned_record(kind, target_id, user)
        return [owner.record_id]

    @staticmethod
    def _check_prefix(path: str, prefix: str) -> None:
        if not path.startswith(prefix) or ".." in path.split("/"):
            raise AccessDeniedError("The file path does not belong to this record.")

    # ------------------------------------------------------------------
    # Signed URLs and uploads
    # ------------------------------------------------------------------

    async def create_signed_upload_url(
        self, path: str, content_type: str | None = None
    ) -> SignedUrl:
        """Short-lived write URL for a caller-built path."""
        url = await self.blob_store.sign_upload(
            self.bucket, path, UPLOAD_URL_TTL, content_type=content_type
        )
        return SignedUrl(
            url=url, path=path, expires_in_seconds=int(UPLOAD_URL_TTL.total_seconds())
        )

    async def create_signed_download_url(self, path: str, long_lived: bool = False) -> SignedUrl:
        """
        Read URL for a path.

        Long-lived URLs (7 days) are for assets viewed repeatedly, such as
        profile pictures; everything else gets 10 minutes.
        """
        ttl = LONG_LIVED_DOWNLOAD_URL_TTL if long_lived else DOWNLOAD_URL_TTL
        url = await self.blob_store.sign_download(self.bucket, path, ttl)
        return SignedUrl(url=url, path=path, expires_in_seconds=int(ttl.total_seconds()))

    async def prepare_upload(
        self,
        kind: AttachmentKind,
        target_id: str,
        filename: str,
        user: CurrentUser,
        content_type: str | None = None,
    ) -> SignedUrl:
        """
        Check ownership, choose the object path and sign an upload URL for it.

        For submissions target_id is the assignment id.
        """
        owner_ids = await self._upload_owner_ids(kind, target_id, user)
        path = build_object_path(kind, owner_ids, filename, self.clock())
        return await self.create_signed_upload_url(path, content_type)

    async def upload_file(
        self,
        kind: AttachmentKind,
        target_id: str,
        filename: str,
        data: BinaryIO,
        user: CurrentUser,
        content_type: str | None = None,
    ) -> str:
        """
        Upload a file through the server for clients that cannot PUT to a
        signed URL. The caller still records the returned path.
        """
        owner_ids = await self._upload_owner_ids(kind, target_id, user)
        path = build_object_path(kind, owner_ids, filename, self.clock())
        await self.blob_store.upload(self.bucket, path, data, content_type=content_type)
        logger.info(f"Uploaded {filename} to {path}")
        return path

    async def authorize_download(self, path: str, user: CurrentUser) -> None:
        """
        Check the caller may read a path.

        Assignment and module files are course material readable by any
        signed-in user. Submission files are readable by the submitting
        student, the assignment's teacher and admins.
        """
        parts = path.split("/")
        if len(parts) < 3 or ".." in parts:
            raise AccessDeniedError("Invalid file path.")

        try:
            kind = AttachmentKind(parts[0])
        except ValueError as e:
            raise AccessDeniedError("Invalid file path.") from e

        if kind != AttachmentKind.SUBMISSION or user.role == UserRole.ADMIN.value:
            return

        if len(parts) < 4:
            raise AccessDeniedError("Invalid file path.")
        student_user_id, assignment_id = parts[1], parts[2]
        if student_user_id == user.id:
            return
        if user.role == UserRole.TEACHER.value:
            teacher_user_id = await repository.get_assignment_teacher_user_id(
                self.db, assignment_id
            )
            if teacher_user_id == user.id:
                return

        raise AccessDeniedError("You cannot access this file.")

    # ------------------------------------------------------------------
    # Path list
    # ------------------------------------------------------------------

    async def record_attachment(
        self, kind: AttachmentKind, record_id: str, path: str, user: CurrentUser
    ) -> bool:
        """
        Add an uploaded file's path to an assignment or module.

        Returns:
            False if the path was already recorded
        """
        owner = await self._owned_record(kind, record_id, user)
        self._check_prefix(path, owner.prefix)

        added = await repository.append_path(self.db, kind, owner.record_id, path)
        await self.db.commit()

        if added:
            logger.info(f"Recorded {path} on {kind.value}/{owner.record_id}")
        else:
            logger.info(f"{path} already recorded on {kind.value}/{owner.record_id}")
        return added

    async def record_submission(
        self, assignment_id: str, path: str, user: CurrentUser
    ) -> tuple[str, bool]:
        """
        Record a submission file for the calling student.

        The submission row is created on the first file; creating it notifies
        the assignment's teacher.

        Returns:
            (submission id, True if the path was newly recorded)
        """
        if user.role != UserRole.STUDENT.value:
            raise AccessDeniedError("Only students can submit assignments.")

        student_id = await repository.get_student_id(self.db, user.id)
        if student_id is None:
            raise AccessDeniedError("No student profile found for this account.")

        teacher_user_id = await repository.get_assignment_teacher_user_id(self.db, assignment_id)
        if teacher_user_id is None:
            raise NotFoundError("Assignment not found.")

        self._check_prefix(path, f"{AttachmentKind.SUBMISSION.value}/{user.id}/{assignment_id}/")

        submission_id, created, recorded = await repository.upsert_submission_path(
            self.db, assignment_id, student_id, path
        )
        await self.db.commit()

        if recorded:
            logger.info(f"Recorded {path} on submission {submission_id} (created={created})")
        else:
            logger.info(f"{path} already recorded on submission {submission_id}")

        if created:
            await self.events.publish_submission_created(
                submission_id=submission_id,
                assignment_id=assignment_id,
                student_user_id=user.id,
                teacher_user_id=teacher_user_id,
            )
        return submission_id, recorded

    async def delete_attachment(
        self, kind: AttachmentKind, record_id: str, path: str, user: CurrentUser
    ) -> None:
        """
        Delete one file and remove it from the record.

        The path is removed from the record even when the blob delete fails.
        """
        owner = await self._owned_record(kind, record_id, user)
        self._check_prefix(path, owner.prefix)

        try:
            await self.blob_store.delete(self.bucket, path)
        except Exception as e:
            logger.warning(f"Blob delete failed for {path}, removing record entry anyway: {e}")

        await repository.remove_path(self.db, kind, owner.record_id, path)
        await self.db.commit()
        logger.info(f"Deleted {path} from {kind.value}/{owner.record_id}")

    async def delete_all_attachments(
        self, kind: AttachmentKind, record_id: str, user: CurrentUser
    ) -> int:
        """
        Delete every file under a record's prefix, then clear its list.

        Returns:
            Number of blobs deleted

        Raises:
            StorageUnavailableError: If the blob store delete fails; the
                record's list is left unchanged
        """
        owner = await self._owned_record(kind, record_id, user)

        deleted = await self.blob_store.delete_prefix(self.bucket, owner.prefix)

        await repository.clear_paths(self.db, kind, owner.record_id)
        await self.db.commit()
        logger.info(f"Deleted all {deleted} files of {kind.value}/{owner.record_id}")
        return deleted
