from typing import Optional

from fastapi import Header, Request

from rentals.core.errors import Unauthenticated, Unauthorized
from rentals.domain.actor import Actor
from rentals.models import UserRole
from rentals.services.ical_service import FeedFetcher
from rentals.services.notification_service import Notifier
from rentals.services.payment_service import PaymentProcessor


async def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Actor:
    """
    Пользователь из заголовков шлюза (X-User-Id, X-User-Role).
    Аутентификацию выполняет шлюз, здесь только разбор.
    """
    if not x_user_id:
        raise Unauthenticated("X-User-Id header is required")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise Unauthenticated("X-User-Id must be an integer")

    try:
        role = UserRole((x_user_role or UserRole.GUEST.value).strip().lower())
    except ValueError:
        raise Unauthorized(f"Unknown role: {x_user_role}")
    return Actor(user_id=user_id, role=role)


def get_payment_processor(request: Request) -> Optional[PaymentProcessor]:
    return getattr(request.app.state, "payment_processor", None)


def get_notifier(request: Request) -> Optional[Notifier]:
    return getattr(request.app.state, "notifier", None)


def get_feed_fetcher(request: Request) -> FeedFetcher:
    fetcher = getattr(request.app.state, "feed_fetcher", None)
    return fetcher or FeedFetcher()
