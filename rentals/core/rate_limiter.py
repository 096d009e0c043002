"""
Rate limiter (slowapi), shared by main.py and the API routers.

Ключ лимита: пользователь из X-User-Id (его ставит шлюз), без него IP клиента.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from rentals.core.config import settings


def rate_limit_key(request: Request) -> str:
    user_id = request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=rate_limit_key,
    enabled=settings.rate_limit_enabled,
)
