"""Authentication module: registration, sessions and password reset."""

from school_sms.modules.auth.admin_router import router as admin_router
from school_sms.modules.auth.router import router
from school_sms.modules.auth.service import AuthService, LoginResult

__all__ = ["router", "admin_router", "AuthService", "LoginResult"]
