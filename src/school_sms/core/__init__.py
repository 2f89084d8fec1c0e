"""
Core module - Configuration, database, security, and utilities.
"""

from school_sms.core.config import get_settings, settings
from school_sms.core.database import Base, close_db, get_db, init_db
from school_sms.core.redis import close_redis, init_redis
from school_sms.core.security import (
    TokenKind,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    verify_password,
)

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    "init_db",
    "close_db",
    # Redis
    "init_redis",
    "close_redis",
    # Security
    "TokenKind",
    "hash_password",
    "verify_password",
    "create_access_token",
    "create_refresh_token",
    "decode_token",
]
