"""
Delete stale verification codes.

Removes unverified codes past their expiry and verified codes older than the
post-verification window. Safe to run from cron at any interval.

Usage:
    python -m budgetapp.scripts.cleanup_otps
"""
import asyncio
import logging

from budgetapp.core.config import settings
from budgetapp.core.database import get_db_session
from budgetapp.services.otp_service import OtpService

logger = logging.getLogger(__name__)


async def cleanup_otps() -> int:
    async with get_db_session() as db:
        removed = await OtpService(db).purge_stale()

    logger.info(f"Complete! Removed {removed} stale codes")
    return removed


def main():
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    asyncio.run(cleanup_otps())


if __name__ == "__main__":
    main()
