"""
Shared module - Base model and common building blocks.
"""

from school_sms.modules.shared.models import BaseModel

__all__ = ["BaseModel"]
