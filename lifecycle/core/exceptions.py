"""
Типизированные ошибки движка жизненного цикла заявок.

Каждая ошибка несёт машиночитаемый код причины (reason_code), название
попытки перехода и текущий статус заявки. Формулировки для пользователя
составляет слой интерфейса.
"""

from enum import Enum


def _plain(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


class LifecycleError(Exception):
    """Базовая ошибка движка."""

    retryable: bool = False
    default_reason = "lifecycle_error"

    def __init__(
        self,
        message: str,
        *,
        reason_code: str | None = None,
        transition: object = None,
        status: object = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason_code = reason_code or self.default_reason
        self.transition = _plain(transition)
        self.status = _plain(status)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "reason_code": self.reason_code,
            "message": self.message,
            "transition": self.transition,
            "status": self.status,
            "retryable": self.retryable,
        }


class InvalidTransition(LifecycleError):
    """Переход невозможен из текущего статуса (или нарушен инвариант)."""

    default_reason = "invalid_source_state"


class Unauthorized(LifecycleError):
    """У участника нет роли или прав владения для перехода."""

    default_reason = "not_permitted"


class PreconditionFailed(LifecycleError):
    """Отсутствует или слишком короткое обязательное поле."""

    default_reason = "precondition_failed"


class AlreadyReviewed(LifecycleError):
    """Сторона уже оставила отзыв в текущем цикле приёмки."""

    default_reason = "already_reviewed"


class ConflictingTransition(LifecycleError):
    """
    Проигрыш оптимистичной блокировки: заявку успели изменить.
    Вызывающая сторона должна перечитать состояние и повторить попытку.
    """

    retryable = True
    default_reason = "version_conflict"


class TerminalState(LifecycleError):
    """Заявка закрыта или отклонена, переходы больше невозможны."""

    default_reason = "terminal_state"


class RequestNotFound(LifecycleError):
    default_reason = "request_not_found"
