"""
Модели участников и событий журнала заявки.
"""

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class Role(str, Enum):
    TENANT = "tenant"
    LANDLORD = "landlord"
    SUPER_ADMIN = "super_admin"
    CARETAKER = "caretaker"
    ARTISAN = "artisan"


# Роли, от имени которых выполняются действия арендодателя
LANDLORD_ROLES = frozenset({Role.LANDLORD, Role.SUPER_ADMIN})
# Роли исполнителей работ
ASSIGNEE_ROLES = frozenset({Role.CARETAKER, Role.ARTISAN})


class Actor(BaseModel):
    """Участник, инициирующий переход."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: Role


class TransitionName(str, Enum):
    START_REVIEW = "start_review"
    APPROVE = "approve"
    REJECT = "reject"
    ASSIGN = "assign"
    ACCEPT = "accept"
    DECLINE = "decline"
    COMPLETE_WORK = "complete_work"
    REVIEW = "review"
    CLOSE = "close"
    REOPEN = "reopen"


class EventType(str, Enum):
    """Типы событий: создание заявки и по одному на каждый переход."""

    CREATED = "created"
    START_REVIEW = "start_review"
    APPROVE = "approve"
    REJECT = "reject"
    ASSIGN = "assign"
    ACCEPT = "accept"
    DECLINE = "decline"
    COMPLETE_WORK = "complete_work"
    REVIEW = "review"
    CLOSE = "close"
    REOPEN = "reopen"

    @classmethod
    def for_transition(cls, transition: TransitionName) -> "EventType":
        return cls(transition.value)


def freeze(value: Any) -> Any:
    """
    Копия значения, доступная только для чтения: словари становятся
    MappingProxyType, списки кортежами.
    """
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Обратное преобразование в обычные dict и list, например для JSON."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


class Event(BaseModel):
    """
    Неизменяемая запись журнала заявки.

    sequence начинается с 1 (событие created) и совпадает с версией
    снимка после применения события.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str
    request_id: str
    sequence: int = Field(..., ge=1)
    event_type: EventType
    actor_id: str
    actor_role: Role
    timestamp: datetime
    payload: Mapping[str, Any] = Field(default_factory=dict)

    @field_validator("payload")
    @classmethod
    def _freeze_payload(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return freeze(value)

    @field_serializer("payload")
    def _serialize_payload(self, value: Mapping[str, Any]) -> dict[str, Any]:
        return thaw(value)

    @staticmethod
    def make_id(request_id: str, sequence: int) -> str:
        return f"{request_id}:{sequence}"
