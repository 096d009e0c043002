"""
Генерация человекочитаемых номеров бронирований: BKG-YYYYMMDD-NNNNN
"""

import random
from datetime import date
from typing import Awaitable, Callable, Optional

from rentals.core.config import settings
from rentals.core.errors import ReferenceUnavailable


def make_reference(prefix: str = "BKG", today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{prefix}-{today:%Y%m%d}-{random.randint(0, 99999):05d}"


async def generate_unique_reference(
    exists_check: Callable[[str], Awaitable[bool]],
    prefix: str = "BKG",
    today: Optional[date] = None,
    max_attempts: Optional[int] = None,
) -> str:
    """
    Подбирает номер, которого ещё нет в базе.
    exists_check - корутина, возвращающая True, если номер занят.
    После max_attempts неудачных попыток поднимает ReferenceUnavailable.
    """
    attempts = max_attempts or settings.reference_max_attempts
    for _ in range(attempts):
        candidate = make_reference(prefix, today)
        if not await exists_check(candidate):
            return candidate
    raise ReferenceUnavailable(f"Could not generate a unique {prefix} reference in {attempts} attempts")
