import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.models import BookingLog

logger = logging.getLogger(__name__)


class BookingLogService:
    """Журнал действий с бронями. Ошибки записи никогда не ломают операцию."""

    @staticmethod
    async def log_action(
        db: AsyncSession,
        booking_id: int,
        action: str,
        *,
        actor_id: Optional[int] = None,
        actor_role: Optional[str] = None,
        previous_status: Optional[str] = None,
        new_status: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            async with db.begin_nested():
                db.add(
                    BookingLog(
                        booking_id=booking_id,
                        action=action,
                        actor_id=actor_id,
                        actor_role=actor_role,
                        previous_status=previous_status,
                        new_status=new_status,
                        details=details,
                    )
                )
        except Exception as e:
            logger.error(f"Failed to write booking log ({action}, booking={booking_id}): {e}")

    @staticmethod
    async def get_logs(db: AsyncSession, booking_id: int) -> list[BookingLog]:
        result = await db.execute(
            select(BookingLog)
            .where(BookingLog.booking_id == booking_id)
            .order_by(BookingLog.created_at, BookingLog.id)
        )
        return list(result.scalars().all())
