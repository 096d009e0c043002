from dataclasses import dataclass

from rentals.models import UserRole


@dataclass(frozen=True)
class Actor:
    """Пользователь, от имени которого выполняется операция (id и роль от шлюза)."""

    user_id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def owns(self, owner_id: int) -> bool:
        return self.is_admin or self.user_id == owner_id
