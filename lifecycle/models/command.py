"""
Входные команды движка и схемы их полезной нагрузки.

Схемы проверяют только типы. Длины причин и наличие обязательных полей
проверяет движок, чтобы вернуть точный код причины.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lifecycle.models.event import Actor, TransitionName
from lifecycle.models.request import CostBreakdown


class TransitionCommand(BaseModel):
    """Запрос на переход: что делаем, кто делает и с какими данными."""

    model_config = ConfigDict(frozen=True)

    type: TransitionName
    actor: Actor
    payload: dict[str, Any] = Field(default_factory=dict)


class EmptyPayload(BaseModel):
    pass


class ReasonPayload(BaseModel):
    reason: str = ""


class AssignPayload(BaseModel):
    assignee_id: str | None = None
    assignee_name: str | None = None


class CompleteWorkPayload(BaseModel):
    completion_notes: str = ""
    cost: CostBreakdown | None = None
    media: list[str] = Field(default_factory=list)


class ReviewPayload(BaseModel):
    approved: bool
    rating: int | None = Field(default=None, ge=1, le=5)
    feedback: str | None = None
    rejection_reason: str | None = None


PAYLOAD_SCHEMAS: dict[TransitionName, type[BaseModel]] = {
    TransitionName.START_REVIEW: EmptyPayload,
    TransitionName.APPROVE: EmptyPayload,
    TransitionName.REJECT: ReasonPayload,
    TransitionName.ASSIGN: AssignPayload,
    TransitionName.ACCEPT: EmptyPayload,
    TransitionName.DECLINE: ReasonPayload,
    TransitionName.COMPLETE_WORK: CompleteWorkPayload,
    TransitionName.REVIEW: ReviewPayload,
    TransitionName.CLOSE: EmptyPayload,
    TransitionName.REOPEN: ReasonPayload,
}
