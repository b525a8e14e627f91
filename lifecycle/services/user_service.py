"""
Сервисный модуль для определения участников заявок.

Реализует логику получения пользователей из Google-таблицы,
а также кэширование для повышения производительности и отказоустойчивости.
"""

import logging
import time
from typing import Optional

from lifecycle.core.config import settings
from lifecycle.models.event import Actor
from lifecycle.models.user import User
from lifecycle.services.google_api import GoogleAPIService

logger = logging.getLogger(__name__)


def _clean_record(record: dict) -> dict:
    # Пустые ячейки таблицы приходят как "", для модели это отсутствие значения
    return {
        key: (str(value) if key == "user_id" else value)
        for key, value in record.items()
        if value != ""
    }


class UserService:
    """
    Сервис для работы с данными пользователей.
    """

    def __init__(
        self, google_api: GoogleAPIService, cache_ttl_seconds: int | None = None
    ):
        self.google_api = google_api
        self._cache_ttl = (
            settings.user_cache_ttl_seconds
            if cache_ttl_seconds is None
            else cache_ttl_seconds
        )
        self._user_cache: list[User] | None = None
        self._cache_timestamp: float = 0.0

    def get_all_users(self) -> list[User]:
        current_time = time.time()
        if (
            self._user_cache is not None
            and (current_time - self._cache_timestamp) < self._cache_ttl
        ):
            logger.debug("Returning users from cache.")
            return self._user_cache

        logger.info("Cache is expired or empty. Fetching users from Google Sheet...")
        try:
            users_sheet = self.google_api.get_users_worksheet()
            records = users_sheet.get_all_records(numericise_ignore=["all"])
            self._user_cache = [User(**_clean_record(record)) for record in records]
            self._cache_timestamp = current_time
            logger.info(
                f"Successfully fetched and cached {len(self._user_cache)} users."
            )
            return self._user_cache
        except Exception as e:
            logger.error(f"Failed to fetch users from Google Sheet: {e}", exc_info=True)
            if self._user_cache is not None:
                logger.warning("Returning stale user cache due to fetch failure.")
                return self._user_cache
            return []

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        for user in self.get_all_users():
            if user.user_id == user_id:
                return user
        return None

    def get_actor(self, user_id: str) -> Optional[Actor]:
        """Определяет участника (id и роль) по идентификатору пользователя."""
        user = self.get_user_by_id(user_id)
        if user is None:
            logger.warning(f"User {user_id} is not registered.")
            return None
        return user.to_actor()

