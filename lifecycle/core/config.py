"""
Модуль конфигурации проекта.

Загружает настройки из переменных окружения с помощью Pydantic Settings.
Все значения имеют значения по умолчанию, поэтому движок можно использовать
как библиотеку без файла .env.
"""

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Основные настройки приложения.

    Атрибуты:
        bot_token (str | None): Токен Telegram Bot API для уведомлений.
        maintenance_chat_id (int | None): Общий чат службы эксплуатации.
        google_sheet_id (str | None): ID Google-таблицы с журналом событий.
        google_drive_folder_id (str | None): ID папки на Google Drive для фото.
        sla_*_hours (float): Нормативы SLA по этапам (в часах).
        landlord_override_enabled (bool): Разрешить арендодателю закрывать
            приёмку работ без одобрения арендатора.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # --- Telegram Settings ---
    bot_token: str | None = Field(default=None, description="Telegram Bot API Token")
    maintenance_chat_id: int | None = Field(
        default=None, description="Telegram Chat ID for maintenance notifications"
    )

    # --- Google API Settings ---
    google_sheet_id: str | None = Field(
        default=None, description="Google Sheet ID for users and request events"
    )
    google_drive_folder_id: str | None = Field(
        default=None, description="Google Drive Folder ID for completion photos"
    )

    display_timezone: str = Field(
        default="Europe/Moscow",
        description="Timezone for displaying dates and times to users",
    )

    # --- SLA Settings ---
    sla_response_hours: float = Field(default=24, gt=0)
    sla_assignment_hours: float = Field(default=48, gt=0)
    sla_acceptance_hours: float = Field(default=24, gt=0)
    sla_completion_emergency_hours: float = Field(default=4, gt=0)
    sla_completion_urgent_hours: float = Field(default=24, gt=0)
    sla_completion_normal_hours: float = Field(default=72, gt=0)
    sla_completion_low_hours: float = Field(default=168, gt=0)
    sla_approaching_threshold: float = Field(
        default=0.25,
        gt=0,
        lt=1,
        description="Share of the allowance left when a stage becomes 'approaching'",
    )

    # --- Business Logic Settings ---
    landlord_override_enabled: bool = Field(
        default=False,
        description="Landlord approval alone resolves a completed request",
    )
    conflict_retry_attempts: int = Field(default=3, ge=1)
    user_cache_ttl_seconds: int = Field(default=60, ge=0)

    # --- Logging ---
    log_level: str = Field(default="INFO", description="Root logging level")

    @computed_field
    @property
    def sla_completion_hours(self) -> dict[str, float]:
        """Собирает нормативы этапа выполнения в словарь по приоритетам."""
        return {
            "emergency": self.sla_completion_emergency_hours,
            "urgent": self.sla_completion_urgent_hours,
            "normal": self.sla_completion_normal_hours,
            "low": self.sla_completion_low_hours,
        }


# Создаем единственный экземпляр настроек, который будет использоваться во всем приложении
settings = Settings()
