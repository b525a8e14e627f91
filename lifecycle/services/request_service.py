"""
Сервис заявок: связывает движок с хранилищем, уведомлениями и
хранилищем фотографий.

Каждый переход выполняется по схеме "прочитать → применить → сохранить
с проверкой версии". При проигрыше гонки (ConflictingTransition) сервис
перечитывает заявку и повторяет попытку; остальные ошибки движка
возвращаются вызывающей стороне как есть.
"""

import logging
import uuid

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lifecycle.core.clock import Clock, SystemClock
from lifecycle.core.config import settings
from lifecycle.core.exceptions import ConflictingTransition
from lifecycle.engine.authority import available_transitions
from lifecycle.engine.machine import TransitionResult, apply_transition, create_request
from lifecycle.engine.sla import SLAConfig, SLADeadline, SLAStage, calculate_sla_deadlines
from lifecycle.models.command import TransitionCommand
from lifecycle.models.event import Actor, Event, TransitionName
from lifecycle.models.request import MaintenanceRequest, Priority
from lifecycle.services.google_api import GoogleAPIService
from lifecycle.services.notification_service import NotificationService
from lifecycle.services.repository import RequestRepository

logger = logging.getLogger(__name__)


class RequestService:
    def __init__(
        self,
        repository: RequestRepository,
        notifier: NotificationService | None = None,
        media_storage: GoogleAPIService | None = None,
        clock: Clock | None = None,
        sla_config: SLAConfig | None = None,
        landlord_override: bool | None = None,
        retry_attempts: int | None = None,
        retry_wait_multiplier: float = 0.1,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.media_storage = media_storage
        self.clock = clock or SystemClock()
        self.sla_config = sla_config or SLAConfig.from_settings(settings)
        self.landlord_override = (
            settings.landlord_override_enabled
            if landlord_override is None
            else landlord_override
        )
        self.retry_attempts = retry_attempts or settings.conflict_retry_attempts
        self.retry_wait_multiplier = retry_wait_multiplier

    async def create_request(
        self,
        actor: Actor,
        *,
        landlord_id: str,
        title: str,
        priority: Priority = Priority.NORMAL,
        category_id: str | None = None,
        description: str | None = None,
        property_id: str | None = None,
        unit_id: str | None = None,
    ) -> MaintenanceRequest:
        """Регистрирует новую заявку арендатора."""
        request_id = str(uuid.uuid4())
        result = create_request(
            request_id=request_id,
            request_number=f"MR-{request_id[:8].upper()}",
            tenant_id=actor.id,
            landlord_id=landlord_id,
            title=title,
            now=self.clock.now(),
            priority=priority,
            category_id=category_id,
            description=description,
            property_id=property_id,
            unit_id=unit_id,
            actor=actor,
        )
        await self.repository.create(result)
        await self._notify(result)
        return result.new_state

    async def get_request(self, request_id: str) -> MaintenanceRequest:
        snapshot, _ = await self.repository.load(request_id)
        return snapshot

    async def get_history(self, request_id: str) -> list[Event]:
        return await self.repository.load_events(request_id)

    async def transition(
        self, request_id: str, command: TransitionCommand
    ) -> TransitionResult:
        """
        Применяет переход к заявке и сохраняет результат.

        Raises:
            LifecycleError: отказ движка; ConflictingTransition выходит наружу, только
                если все попытки проиграли гонку.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ConflictingTransition),
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait_multiplier, max=2),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                snapshot, version = await self.repository.load(request_id)
                result = apply_transition(
                    snapshot,
                    command,
                    self.clock.now(),
                    sla_config=self.sla_config,
                    landlord_override=self.landlord_override,
                )
                await self.repository.save(result, expected_version=version)

        await self._notify(result)
        return result

    async def available_actions(
        self, request_id: str, actor: Actor
    ) -> list[TransitionName]:
        snapshot = await self.get_request(request_id)
        return available_transitions(actor, snapshot)

    async def get_sla(self, request_id: str) -> dict[SLAStage, SLADeadline]:
        snapshot = await self.get_request(request_id)
        return calculate_sla_deadlines(snapshot, self.clock.now(), self.sla_config)

    async def upload_completion_photos(
        self, request_id: str, photos: list[bytes]
    ) -> list[str]:
        """
        Загружает фото выполненной работы и возвращает ссылки для complete_work.
        Фото, которые не удалось загрузить, пропускаются.
        """
        if self.media_storage is None:
            raise RuntimeError("Media storage is not configured")

        links = []
        for index, content in enumerate(photos, start=1):
            link = await self.media_storage.upload_photo_to_drive(
                content=content, file_name=f"request_{request_id}_{index}.jpg"
            )
            if link:
                links.append(link)
            else:
                logger.warning(f"Photo #{index} for request {request_id} was not uploaded.")
        return links

    async def _notify(self, result: TransitionResult) -> None:
        if self.notifier is None:
            return
        await self.notifier.notify(result.emitted_event, result.new_state)
