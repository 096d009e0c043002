"""
Периодическая синхронизация внешних iCal-календарей
"""
import logging

from rentals.database import AsyncSessionLocal
from rentals.services.ical_service import FeedFetcher, IcalService

logger = logging.getLogger(__name__)


async def sync_calendars_job():
    """Импорт всех активных лент всех объявлений"""
    logger.info("🔄 Starting scheduled calendar sync...")

    try:
        async with AsyncSessionLocal() as session:
            failed = await IcalService.sync_all_listings(session, FeedFetcher())

        if failed:
            logger.warning(f"⚠️ Calendar sync finished with {failed} failed feeds")
        else:
            logger.info("✅ Calendar sync completed")

    except Exception as e:
        logger.error(f"❌ Error in calendar sync job: {e}", exc_info=True)
