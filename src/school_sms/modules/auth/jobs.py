"""
Auth Background Jobs

Scheduled maintenance for credential fields:
1. Clear password reset OTPs and reset tokens whose expiry has passed

Expired values are already refused at read time (every lookup checks
`expires_at > now()`); this job only stops them from lingering in the table.

Schedule:
- Runs hourly
- Can be triggered manually via the development debug endpoints
"""

import logging
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from school_sms.core.database import async_session_maker
from school_sms.core.scheduler import register_job
from school_sms.modules.users.repository import UserRepository

logger = logging.getLogger(__name__)

JOB_ID_PURGE_EXPIRED_CREDENTIALS = "auth_purge_expired_credentials"


async def purge_expired_credentials() -> dict[str, Any]:
    """
    Clear expired OTP and reset-token fields.

    Returns:
        Dict with the number of rows cleared
    """
    async with async_session_maker() as db:
        repo = UserRepository(db)
        try:
            cleared = await repo.purge_expired_credentials()
            await repo.commit()
        except Exception:
            await repo.rollback()
            raise

    if cleared:
        logger.info(f"Cleared expired credentials on {cleared} rows")
    return {"cleared": cleared}


def register_auth_jobs() -> None:
    """Register auth background jobs. Call during application startup."""
    register_job(
        job_id=JOB_ID_PURGE_EXPIRED_CREDENTIALS,
        func=purge_expired_credentials,
        trigger=IntervalTrigger(hours=1),
    )
    logger.info(f"Registered job: {JOB_ID_PURGE_EXPIRED_CREDENTIALS} (interval: 1 hour)")
