from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from rentals.services.notification_service import TelegramNotifier, format_booking_message


def sample_booking(**overrides):
    data = dict(
        reference="BKG-20260301-00042",
        listing_id=5,
        check_in=date(2026, 3, 1),
        check_out=date(2026, 3, 4),
        nights=3,
        total_guests=2,
        has_pets=True,
        number_of_pets=1,
        total_amount=Decimal("368.00"),
        currency="USD",
    )
    data.update(overrides)
    return SimpleNamespace(**data)


def test_message_format():
    text = format_booking_message("confirmed", sample_booking())
    assert "Бронь подтверждена" in text
    assert "BKG-20260301-00042" in text
    assert "01.03.2026 - 04.03.2026" in text
    assert "питомцев: 1" in text
    assert "368.00 USD" in text


def test_disabled_without_token():
    assert TelegramNotifier(token="", chat_id=0).enabled is False
    assert TelegramNotifier(token="123:abc", chat_id=42).enabled is True


@pytest.mark.asyncio
async def test_disabled_notifier_sends_nothing():
    notifier = TelegramNotifier(token="", chat_id=0)
    notifier._bot = MagicMock()
    await notifier.booking_event("created", sample_booking())
    notifier._bot.send_message.assert_not_called()


@pytest.mark.asyncio
async def test_send_errors_swallowed():
    notifier = TelegramNotifier(token="123:abc", chat_id=42)
    notifier._bot = MagicMock()
    notifier._bot.send_message = AsyncMock(side_effect=RuntimeError("Telegram is down"))

    await notifier.booking_event("created", sample_booking())

    notifier._bot.send_message.assert_awaited_once()
    assert notifier._bot.send_message.await_args.kwargs["chat_id"] == 42
