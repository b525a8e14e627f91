"""
Сборка сервиса заявок из рабочих компонентов.

Журнал событий и справочник пользователей хранятся в Google-таблице,
фотографии на Google Drive, уведомления уходят через Telegram-бота.
"""

import logging

from telegram import Bot

from lifecycle.core.config import Settings, settings as default_settings
from lifecycle.core.logging_config import setup_logging
from lifecycle.engine.sla import SLAConfig
from lifecycle.services.google_api import GoogleAPIService
from lifecycle.services.notification_service import NotificationService
from lifecycle.services.repository import SheetsRequestRepository
from lifecycle.services.request_service import RequestService
from lifecycle.services.user_service import UserService

logger = logging.getLogger(__name__)


def build_request_service(settings: Settings | None = None) -> RequestService:
    """Настраивает логирование и собирает RequestService."""
    settings = settings or default_settings
    setup_logging(settings.log_level)

    logger.info("Initializing services...")
    google_api_service = GoogleAPIService()
    user_service = UserService(
        google_api=google_api_service,
        cache_ttl_seconds=settings.user_cache_ttl_seconds,
    )
    sla_config = SLAConfig.from_settings(settings)

    notifier = None
    if settings.bot_token:
        notifier = NotificationService(
            bot=Bot(token=settings.bot_token),
            user_service=user_service,
            sla_config=sla_config,
            maintenance_chat_id=settings.maintenance_chat_id,
        )
    else:
        logger.warning("BOT_TOKEN is not set; notifications are disabled.")

    service = RequestService(
        repository=SheetsRequestRepository(google_api_service),
        notifier=notifier,
        media_storage=google_api_service,
        sla_config=sla_config,
        landlord_override=settings.landlord_override_enabled,
        retry_attempts=settings.conflict_retry_attempts,
    )
    logger.info(
        f"Request service ready (landlord override: "
        f"{'on' if settings.landlord_override_enabled else 'off'})."
    )
    return service
