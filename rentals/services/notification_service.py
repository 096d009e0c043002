"""
Уведомления хосту о событиях бронирований.

Отправка fire-and-forget: любые ошибки логируются и проглатываются,
основную операцию они не ломают.
"""

import logging
from typing import Optional, Protocol

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from rentals.core.config import settings
from rentals.models import Booking

logger = logging.getLogger(__name__)

EVENT_TITLES = {
    "created": "🆕 Новая бронь",
    "confirmed": "✅ Бронь подтверждена",
    "declined": "❌ Бронь отклонена",
    "cancelled": "🚫 Бронь отменена",
    "expired": "⌛ Бронь истекла",
    "checked-in": "🏠 Гость заехал",
    "checked-out": "🧳 Гость выехал",
    "completed": "🏁 Бронь завершена",
}


class Notifier(Protocol):
    async def booking_event(self, event: str, booking: Booking) -> None: ...


def format_booking_message(event: str, booking: Booking) -> str:
    title = EVENT_TITLES.get(event, f"ℹ️ {event}")
    return (
        f"<b>{title}</b>\n\n"
        f"<b>Номер:</b> {booking.reference}\n"
        f"<b>Объявление:</b> #{booking.listing_id}\n"
        f"<b>Даты:</b> {booking.check_in:%d.%m.%Y} - {booking.check_out:%d.%m.%Y} "
        f"({booking.nights} ноч.)\n"
        f"<b>Гостей:</b> {booking.total_guests}"
        + (f", питомцев: {booking.number_of_pets}" if booking.has_pets else "")
        + f"\n<b>Сумма:</b> {booking.total_amount} {booking.currency}"
    )


class TelegramNotifier:
    """Шлёт события в чат хоста. Без токена - молча ничего не делает."""

    def __init__(self, token: Optional[str] = None, chat_id: Optional[int] = None):
        self.token = token if token is not None else settings.telegram_bot_token
        self.chat_id = chat_id if chat_id is not None else settings.telegram_chat_id
        self._bot: Optional[Bot] = None

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.chat_id)

    @property
    def bot(self) -> Bot:
        if self._bot is None:
            self._bot = Bot(
                token=self.token,
                default=DefaultBotProperties(parse_mode=ParseMode.HTML),
            )
        return self._bot

    async def booking_event(self, event: str, booking: Booking) -> None:
        if not self.enabled:
            return
        try:
            await self.bot.send_message(
                chat_id=self.chat_id,
                text=format_booking_message(event, booking),
            )
        except Exception as e:
            logger.error(f"Failed to send Telegram notification for {booking.reference}: {e}")

    async def close(self) -> None:
        if self._bot is not None:
            await self._bot.session.close()
            self._bot = None


notifier = TelegramNotifier()
