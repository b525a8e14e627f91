"""
Проверка прав на переходы заявки.

Вся политика доступа собрана здесь: какая роль может выполнить переход,
из каких статусов он допустим и чья это заявка. Функции модуля чистые и
детерминированные, их можно вызывать и для решения, и для отрисовки
доступных действий.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from lifecycle.core.exceptions import (
    InvalidTransition,
    LifecycleError,
    TerminalState,
    Unauthorized,
)
from lifecycle.models.event import (
    ASSIGNEE_ROLES,
    LANDLORD_ROLES,
    Actor,
    Role,
    TransitionName,
)
from lifecycle.models.request import MaintenanceRequest, RequestStatus

logger = logging.getLogger(__name__)


class Party(str, Enum):
    """Сторона заявки, которой принадлежит переход."""

    TENANT = "tenant"
    LANDLORD = "landlord"
    ASSIGNEE = "assignee"
    # Арендатор или арендодатель: приёмка выполненных работ
    REVIEWER = "reviewer"


@dataclass(frozen=True)
class TransitionRule:
    sources: frozenset[RequestStatus]
    party: Party
    target: RequestStatus | None = None


S = RequestStatus

TRANSITION_RULES: dict[TransitionName, TransitionRule] = {
    TransitionName.START_REVIEW: TransitionRule(
        frozenset({S.PENDING}), Party.LANDLORD, S.UNDER_REVIEW
    ),
    TransitionName.APPROVE: TransitionRule(
        frozenset({S.UNDER_REVIEW}), Party.LANDLORD, S.APPROVED
    ),
    TransitionName.REJECT: TransitionRule(
        frozenset({S.UNDER_REVIEW}), Party.LANDLORD, S.REJECTED
    ),
    # Из assigned: только после отказа исполнителя (assignee снят)
    TransitionName.ASSIGN: TransitionRule(
        frozenset({S.APPROVED, S.ASSIGNED}), Party.LANDLORD, S.ASSIGNED
    ),
    TransitionName.ACCEPT: TransitionRule(
        frozenset({S.ASSIGNED}), Party.ASSIGNEE, S.IN_PROGRESS
    ),
    TransitionName.DECLINE: TransitionRule(
        frozenset({S.ASSIGNED}), Party.ASSIGNEE, S.ASSIGNED
    ),
    TransitionName.COMPLETE_WORK: TransitionRule(
        frozenset({S.IN_PROGRESS}), Party.ASSIGNEE, S.PENDING_APPROVAL
    ),
    # Итоговый статус определяет консенсус сторон
    TransitionName.REVIEW: TransitionRule(
        frozenset({S.PENDING_APPROVAL}), Party.REVIEWER
    ),
    TransitionName.CLOSE: TransitionRule(
        frozenset({S.RESOLVED}), Party.TENANT, S.CLOSED
    ),
    TransitionName.REOPEN: TransitionRule(
        frozenset({S.RESOLVED}), Party.TENANT, S.IN_PROGRESS
    ),
}


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: str | None = None
    # Имя класса ошибки, которую вызвал бы переход
    kind: str | None = None


def _check_state(request: MaintenanceRequest, transition: TransitionName) -> None:
    if request.is_terminal:
        raise TerminalState(
            f"Request {request.request_number} is {request.status.value}; "
            "no further transitions are allowed.",
            transition=transition,
            status=request.status,
        )

    rule = TRANSITION_RULES[transition]
    if request.status not in rule.sources:
        raise InvalidTransition(
            f"Cannot {transition.value} a request in status '{request.status.value}'.",
            transition=transition,
            status=request.status,
        )

    if (
        transition == TransitionName.ASSIGN
        and request.status == RequestStatus.ASSIGNED
        and request.assignee_id is not None
    ):
        raise InvalidTransition(
            "Request already has an assignee; it can be reassigned only after a decline.",
            reason_code="already_assigned",
            transition=transition,
            status=request.status,
        )


def _deny(message: str, reason_code: str, request, transition) -> Unauthorized:
    return Unauthorized(
        message,
        reason_code=reason_code,
        transition=transition,
        status=request.status,
    )


def _check_landlord(actor: Actor, request: MaintenanceRequest, transition) -> None:
    if actor.role not in LANDLORD_ROLES:
        raise _deny(
            f"Role '{actor.role.value}' cannot {transition.value} requests.",
            "role_not_allowed",
            request,
            transition,
        )
    # super_admin обходит проверку владения, но не проверку статуса
    if actor.role == Role.LANDLORD and actor.id != request.landlord_id:
        raise _deny(
            "Only the landlord of the property can act on this request.",
            "not_property_owner",
            request,
            transition,
        )


def _check_tenant(actor: Actor, request: MaintenanceRequest, transition) -> None:
    if actor.role != Role.TENANT:
        raise _deny(
            f"Only the tenant can {transition.value} this request.",
            "role_not_allowed",
            request,
            transition,
        )
    if actor.id != request.tenant_id:
        raise _deny(
            "Only the tenant who created the request can act on it.",
            "not_request_owner",
            request,
            transition,
        )


def _check_assignee(actor: Actor, request: MaintenanceRequest, transition) -> None:
    if actor.role not in ASSIGNEE_ROLES:
        raise _deny(
            f"Role '{actor.role.value}' cannot {transition.value} assignments.",
            "role_not_allowed",
            request,
            transition,
        )
    if request.assignee_id is None or actor.id != request.assignee_id:
        raise _deny(
            "Only the assigned caretaker can act on this request.",
            "not_assignee",
            request,
            transition,
        )


def review_party(actor: Actor) -> Party | None:
    """Определяет, чей слот приёмки заполняет участник."""
    if actor.role == Role.TENANT:
        return Party.TENANT
    if actor.role in LANDLORD_ROLES:
        return Party.LANDLORD
    return None


def check_transition(
    actor: Actor, request: MaintenanceRequest, transition: TransitionName
) -> None:
    """
    Проверяет допустимость перехода для участника.

    Raises:
        TerminalState: заявка закрыта или отклонена.
        InvalidTransition: переход недопустим из текущего статуса.
        Unauthorized: у участника нет роли или прав на эту заявку.
    """
    _check_state(request, transition)

    party = TRANSITION_RULES[transition].party
    if party == Party.LANDLORD:
        _check_landlord(actor, request, transition)
    elif party == Party.TENANT:
        _check_tenant(actor, request, transition)
    elif party == Party.ASSIGNEE:
        _check_assignee(actor, request, transition)
    else:
        reviewer = review_party(actor)
        if reviewer == Party.TENANT:
            _check_tenant(actor, request, transition)
        elif reviewer == Party.LANDLORD:
            _check_landlord(actor, request, transition)
        else:
            raise _deny(
                "Only the tenant or the landlord can review completed work.",
                "role_not_allowed",
                request,
                transition,
            )


def can_transition(
    actor: Actor, request: MaintenanceRequest, transition: TransitionName
) -> AuthorizationDecision:
    try:
        check_transition(actor, request, transition)
    except LifecycleError as e:
        return AuthorizationDecision(allowed=False, reason=e.reason_code, kind=e.kind)
    return AuthorizationDecision(allowed=True)


def available_transitions(
    actor: Actor, request: MaintenanceRequest
) -> list[TransitionName]:
    """
    Список переходов, которые участник может выполнить прямо сейчас.

    Приёмка не предлагается стороне, уже оставившей отзыв в этом цикле.
    """
    result = []
    for transition in TransitionName:
        if not can_transition(actor, request, transition).allowed:
            continue
        if transition == TransitionName.REVIEW:
            party = review_party(actor)
            slot = (
                request.completion_approved_by_tenant
                if party == Party.TENANT
                else request.completion_approved_by_landlord
            )
            if slot is not None:
                continue
        result.append(transition)
    logger.debug(
        f"Actor {actor.id} ({actor.role.value}) may perform "
        f"{[t.value for t in result]} on request {request.id}."
    )
    return result
