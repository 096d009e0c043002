"""
Периодическая задача: перевод просроченных pending-броней в expired
"""
import logging

from rentals.database import AsyncSessionLocal
from rentals.services.booking_service import BookingService

logger = logging.getLogger(__name__)


async def expire_pending_bookings_job():
    """Дублирует ленивую проверку, чтобы статусы в базе не отставали"""
    logger.info("🔄 Starting pending bookings expiry sweep...")

    try:
        async with AsyncSessionLocal() as session:
            expired = await BookingService.expire_stale_bookings(session)

        if expired:
            logger.info(f"✅ Expired {expired} pending bookings")
        else:
            logger.info("✅ No stale pending bookings")

    except Exception as e:
        logger.error(f"❌ Error in expiry sweep: {e}", exc_info=True)
