"""
Attachments module - File paths on coursework records, backed by the blob store.
"""

from school_sms.modules.attachments.router import router
from school_sms.modules.attachments.schemas import AttachmentKind
from school_sms.modules.attachments.service import AttachmentLedger, build_object_path

__all__ = ["router", "AttachmentKind", "AttachmentLedger", "build_object_path"]
