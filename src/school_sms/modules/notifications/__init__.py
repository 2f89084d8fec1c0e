"""
Notifications module - Live event stream for admins and teachers.
"""

from school_sms.modules.notifications.router import router

__all__ = ["router"]
