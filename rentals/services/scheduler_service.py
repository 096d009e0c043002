"""
Сервис планировщика периодических задач
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from rentals.core.config import settings

logger = logging.getLogger(__name__)


class SchedulerService:
    """Сервис для управления периодическими задачами"""

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self._jobs_registered = False

    def register_jobs(self):
        """Регистрация всех периодических задач"""
        if self._jobs_registered:
            logger.warning("Jobs already registered")
            return

        if not settings.enable_auto_sync:
            logger.info("Auto-sync is disabled in settings")
            return

        # Импортируем здесь чтобы избежать циклических зависимостей
        from rentals.jobs.booking_expiry_job import expire_pending_bookings_job
        from rentals.jobs.calendar_sync_job import sync_calendars_job

        # Истечение pending-броней - каждые N минут
        if settings.booking_expiry_interval_minutes > 0:
            self.scheduler.add_job(
                expire_pending_bookings_job,
                IntervalTrigger(minutes=settings.booking_expiry_interval_minutes),
                id="booking_expiry",
                name="Expire stale pending bookings",
                replace_existing=True,
            )
            logger.info(
                f"Registered booking expiry job (every {settings.booking_expiry_interval_minutes} minutes)"
            )
        else:
            logger.info("Booking expiry sweep disabled (interval = 0)")

        # iCal - каждые N минут
        if settings.calendar_sync_interval_minutes > 0:
            self.scheduler.add_job(
                sync_calendars_job,
                IntervalTrigger(minutes=settings.calendar_sync_interval_minutes),
                id="calendar_sync",
                name="Sync external calendars",
                replace_existing=True,
            )
            logger.info(
                f"Registered calendar sync job (every {settings.calendar_sync_interval_minutes} minutes)"
            )
        else:
            logger.info("Calendar sync disabled (interval = 0)")

        self._jobs_registered = True

    def start(self):
        """Запуск планировщика"""
        if not self.scheduler.running:
            self.register_jobs()
            self.scheduler.start()
            logger.info("Scheduler started")
        else:
            logger.warning("Scheduler already running")

    def shutdown(self):
        """Остановка планировщика"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler stopped")

    def get_jobs(self):
        """Получить список всех задач"""
        return self.scheduler.get_jobs()


# Глобальный экземпляр
scheduler_service = SchedulerService()
