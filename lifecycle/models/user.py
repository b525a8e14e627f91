"""
Модели данных, связанные с пользователем.
"""

from pydantic import BaseModel, Field

from lifecycle.models.event import Actor, Role


class User(BaseModel):
    """
    Модель пользователя, представляющая строку из Google-таблицы.

    Атрибуты:
        user_id (str): Идентификатор пользователя в портале.
        name (str): Отображаемое имя.
        role (Role): Роль пользователя в системе (tenant, landlord, etc.).
        telegram_chat_id (int | None): Чат для личных уведомлений.
    """

    user_id: str = Field(..., description="Portal user ID")
    name: str = Field(..., description="User's display name")
    role: Role = Field(..., description="User's role in the system")
    telegram_chat_id: int | None = Field(
        default=None, description="Telegram chat for personal notifications"
    )

    def to_actor(self) -> Actor:
        return Actor(id=self.user_id, role=self.role)
