"""
Сервис для отправки уведомлений о событиях заявок.

Движок только выдаёт событие; кого уведомлять и как оформить сообщение,
решает этот сервис. Ошибки доставки логируются и не прерывают переход.
"""

import html
import logging
from datetime import datetime

import pytz
from telegram import Bot
from telegram.constants import ParseMode

from lifecycle.core.config import settings
from lifecycle.engine.sla import (
    SLAConfig,
    SLAStatus,
    calculate_sla_deadlines,
    format_time_remaining,
)
from lifecycle.models.event import Event, EventType
from lifecycle.models.request import MaintenanceRequest, RequestStatus
from lifecycle.services.user_service import UserService

logger = logging.getLogger(__name__)

STATUS_LABELS: dict[RequestStatus, str] = {
    RequestStatus.PENDING: "🆕 Новая",
    RequestStatus.UNDER_REVIEW: "🔎 На рассмотрении",
    RequestStatus.APPROVED: "👍 Одобрена",
    RequestStatus.REJECTED: "🚫 Отклонена",
    RequestStatus.ASSIGNED: "👷 Назначена",
    RequestStatus.IN_PROGRESS: "🛠 В работе",
    RequestStatus.PENDING_APPROVAL: "⏳ Ожидает приёмки",
    RequestStatus.RESOLVED: "✅ Решена",
    RequestStatus.CLOSED: "🔒 Закрыта",
}

EVENT_TITLES: dict[EventType, str] = {
    EventType.CREATED: "Создана новая заявка",
    EventType.START_REVIEW: "Заявка взята на рассмотрение",
    EventType.APPROVE: "Заявка одобрена",
    EventType.REJECT: "Заявка отклонена",
    EventType.ASSIGN: "Назначен исполнитель",
    EventType.ACCEPT: "Исполнитель принял заявку в работу",
    EventType.DECLINE: "Исполнитель отказался от заявки",
    EventType.COMPLETE_WORK: "Работы выполнены и ожидают приёмки",
    EventType.REVIEW: "Получен отзыв о выполненной работе",
    EventType.CLOSE: "Заявка закрыта арендатором",
    EventType.REOPEN: "Заявка переоткрыта арендатором",
}


def _format_datetime(dt: datetime | None) -> str:
    """
    Форматирует datetime объект в строку с учетом часового пояса из настроек.
    """
    if not dt:
        return "не указано"

    # Убеждаемся, что время в UTC, если оно "наивное"
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=pytz.utc)

    display_tz = pytz.timezone(settings.display_timezone)
    local_dt = dt.astimezone(display_tz)

    return local_dt.strftime("%d.%m.%Y в %H:%M")


def recipients_for(event: Event, request: MaintenanceRequest) -> list[str]:
    """
    Участники заявки, которых касается событие, кроме автора события.
    """
    kind = event.event_type
    tenant, landlord = request.tenant_id, request.landlord_id
    assignee = request.assignee_id

    if kind == EventType.CREATED:
        ids = [landlord]
    elif kind in (EventType.START_REVIEW, EventType.APPROVE, EventType.REJECT):
        ids = [tenant]
    elif kind == EventType.ASSIGN:
        ids = [assignee, tenant]
    elif kind == EventType.DECLINE:
        ids = [landlord]
    elif kind in (EventType.ACCEPT, EventType.COMPLETE_WORK):
        ids = [tenant, landlord]
    elif kind == EventType.REVIEW:
        outcome = event.payload.get("outcome")
        if outcome == "rework":
            ids = [assignee, tenant, landlord]
        elif outcome == "resolved":
            ids = [tenant, landlord, assignee]
        else:
            ids = [tenant, landlord]
    else:
        ids = [landlord, assignee]

    result = []
    for user_id in ids:
        if user_id and user_id != event.actor_id and user_id not in result:
            result.append(user_id)
    return result


def render_message(
    event: Event, request: MaintenanceRequest, sla_config: SLAConfig
) -> str:
    title = html.escape(request.title)
    lines = [
        f"🔧 <b>Заявка #{html.escape(request.request_number)}</b>",
        f"{title}",
        "",
        f"<b>{EVENT_TITLES[event.event_type]}</b>",
        f"Статус: {STATUS_LABELS[request.status]}",
        f"🕓 {_format_datetime(event.timestamp)}",
    ]

    if request.assignee_name and event.event_type == EventType.ASSIGN:
        lines.append(f"👷 Исполнитель: {html.escape(request.assignee_name)}")

    reason = event.payload.get("reason") or event.payload.get("rejection_reason")
    if reason:
        lines.append(f"💬 Причина: {html.escape(reason)}")

    if event.event_type == EventType.REVIEW and event.payload.get("rating"):
        lines.append(f"⭐ Оценка: {event.payload['rating']}/5")

    # Срок ближайшего незакрытого этапа
    for deadline in calculate_sla_deadlines(request, event.timestamp, sla_config).values():
        if deadline.status in (SLAStatus.ON_TIME, SLAStatus.APPROACHING):
            lines.append(
                f"⏰ Срок: {_format_datetime(deadline.deadline_at)} "
                f"({format_time_remaining(deadline.time_remaining)})"
            )
            break

    return "\n".join(lines)


class NotificationService:
    def __init__(
        self,
        bot: Bot,
        user_service: UserService,
        sla_config: SLAConfig | None = None,
        maintenance_chat_id: int | None = None,
    ) -> None:
        self.bot = bot
        self.user_service = user_service
        self.sla_config = sla_config or SLAConfig.from_settings(settings)
        self.maintenance_chat_id = (
            maintenance_chat_id
            if maintenance_chat_id is not None
            else settings.maintenance_chat_id
        )

    def _chat_ids(self, event: Event, request: MaintenanceRequest) -> list[int]:
        chat_ids = []
        for user_id in recipients_for(event, request):
            user = self.user_service.get_user_by_id(user_id)
            if user is None or user.telegram_chat_id is None:
                logger.debug(f"User {user_id} has no Telegram chat; skipping.")
                continue
            chat_ids.append(user.telegram_chat_id)
        if self.maintenance_chat_id is not None:
            chat_ids.append(self.maintenance_chat_id)
        return list(dict.fromkeys(chat_ids))

    async def notify(self, event: Event, request: MaintenanceRequest) -> None:
        """
        Рассылает уведомление о событии всем заинтересованным участникам.
        """
        text = render_message(event, request, self.sla_config)
        for chat_id in self._chat_ids(event, request):
            try:
                await self.bot.send_message(
                    chat_id=chat_id, text=text, parse_mode=ParseMode.HTML
                )
                logger.info(
                    f"Sent {event.event_type.value} notification for request "
                    f"{request.id} to chat {chat_id}."
                )
            except Exception as e:
                logger.error(
                    f"Failed to send notification for {request.id} to chat {chat_id}: {e}",
                    exc_info=True,
                )
