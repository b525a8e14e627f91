"""
Машина состояний заявки на ремонт.

Журнал событий является источником истины: снимок заявки получается сверткой
событий функцией _reduce. Применение перехода включает проверку прав и
предусловий, построение ровно одного события и ту же свертку этого
события поверх текущего снимка. Поэтому replay(журнал) всегда совпадает
с последним выданным снимком.

Модуль не выполняет ввода-вывода; все проверки выполняются до
построения нового состояния, входной снимок неизменяем.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from pydantic import BaseModel, ValidationError

from lifecycle.core.clock import as_utc
from lifecycle.core.exceptions import (
    InvalidTransition,
    LifecycleError,
    PreconditionFailed,
)
from lifecycle.engine.authority import TRANSITION_RULES, Party, check_transition
from lifecycle.engine.consensus import ConsensusOutcome, resolve_review
from lifecycle.engine.sla import SLAConfig, SLAStage, stage_met
from lifecycle.models.command import PAYLOAD_SCHEMAS, TransitionCommand
from lifecycle.models.event import Actor, Event, EventType, Role, TransitionName, thaw
from lifecycle.models.request import (
    ApprovalSlot,
    CostBreakdown,
    MaintenanceRequest,
    Priority,
    RequestStatus,
)

logger = logging.getLogger(__name__)

MIN_DECLINE_REASON_LENGTH = 10
MIN_REOPEN_REASON_LENGTH = 10

# Временная метка, которую устанавливает переход
TIMESTAMP_FIELDS: dict[TransitionName, str] = {
    TransitionName.START_REVIEW: "review_started_at",
    TransitionName.APPROVE: "approved_at",
    TransitionName.REJECT: "rejected_at",
    TransitionName.ASSIGN: "assigned_at",
    TransitionName.ACCEPT: "accepted_at",
    TransitionName.COMPLETE_WORK: "completed_at",
    TransitionName.CLOSE: "closed_at",
}

# Этап SLA, который закрывает переход
CLOSED_STAGES: dict[TransitionName, SLAStage] = {
    TransitionName.START_REVIEW: SLAStage.RESPONSE,
    TransitionName.ASSIGN: SLAStage.ASSIGNMENT,
    TransitionName.ACCEPT: SLAStage.ACCEPTANCE,
    TransitionName.COMPLETE_WORK: SLAStage.COMPLETION,
}


@dataclass(frozen=True)
class TransitionResult:
    new_state: MaintenanceRequest
    emitted_event: Event


def create_request(
    *,
    request_id: str,
    request_number: str,
    tenant_id: str,
    landlord_id: str,
    title: str,
    now: datetime,
    priority: Priority = Priority.NORMAL,
    category_id: str | None = None,
    description: str | None = None,
    property_id: str | None = None,
    unit_id: str | None = None,
    actor: Actor | None = None,
) -> TransitionResult:
    """
    Создаёт заявку в статусе pending и первое событие журнала.

    По умолчанию автором события считается арендатор.
    """
    now = as_utc(now)
    if not title or not title.strip():
        raise PreconditionFailed(
            "Request title must not be empty.", reason_code="title_required"
        )

    author = actor or Actor(id=tenant_id, role=Role.TENANT)
    payload = {
        "request_number": request_number,
        "tenant_id": tenant_id,
        "landlord_id": landlord_id,
        "title": title.strip(),
        "priority": Priority(priority).value,
        "category_id": category_id,
        "description": description,
        "property_id": property_id,
        "unit_id": unit_id,
    }
    event = Event(
        event_id=Event.make_id(request_id, 1),
        request_id=request_id,
        sequence=1,
        event_type=EventType.CREATED,
        actor_id=author.id,
        actor_role=author.role,
        timestamp=now,
        payload=payload,
    )
    state = _initial_state(event)
    logger.info(f"Request {request_id} ({request_number}) created by {author.id}.")
    return TransitionResult(new_state=state, emitted_event=event)


def _parse_payload(command: TransitionCommand, request: MaintenanceRequest) -> BaseModel:
    schema = PAYLOAD_SCHEMAS[command.type]
    try:
        return schema.model_validate(command.payload)
    except ValidationError as e:
        raise PreconditionFailed(
            f"Invalid payload for {command.type.value}: {e.errors(include_url=False)}",
            reason_code="invalid_payload",
            transition=command.type,
            status=request.status,
        ) from e


def _require_text(
    value: str | None,
    min_length: int,
    reason_code: str,
    label: str,
    transition: TransitionName,
    request: MaintenanceRequest,
) -> str:
    text = (value or "").strip()
    if len(text) < min_length:
        raise PreconditionFailed(
            f"{label} must be at least {min_length} characters.",
            reason_code=reason_code,
            transition=transition,
            status=request.status,
        )
    return text


def _build_payload(
    request: MaintenanceRequest,
    command: TransitionCommand,
    payload: BaseModel,
    now: datetime,
    sla_config: SLAConfig,
    landlord_override: bool,
) -> dict[str, Any]:
    transition = command.type
    data: dict[str, Any] = {}

    if transition == TransitionName.REJECT:
        data["reason"] = _require_text(
            payload.reason, 1, "reason_required", "Rejection reason", transition, request
        )

    elif transition == TransitionName.ASSIGN:
        assignee_id = (payload.assignee_id or "").strip()
        if not assignee_id:
            raise PreconditionFailed(
                "Assignee must be specified.",
                reason_code="assignee_required",
                transition=transition,
                status=request.status,
            )
        data["assignee_id"] = assignee_id
        data["assignee_name"] = payload.assignee_name

    elif transition == TransitionName.DECLINE:
        data["reason"] = _require_text(
            payload.reason,
            MIN_DECLINE_REASON_LENGTH,
            "decline_reason_too_short",
            "Decline reason",
            transition,
            request,
        )

    elif transition == TransitionName.COMPLETE_WORK:
        data["completion_notes"] = _require_text(
            payload.completion_notes,
            1,
            "completion_notes_required",
            "Completion notes",
            transition,
            request,
        )
        data["cost"] = (
            payload.cost.model_dump(mode="json", exclude={"total"})
            if payload.cost
            else None
        )
        data["media"] = list(payload.media)

    elif transition == TransitionName.REVIEW:
        result = resolve_review(
            request,
            command.actor,
            payload,
            now,
            landlord_override=landlord_override,
        )
        if result.outcome == ConsensusOutcome.RESOLVED and request.resolved_at is not None:
            _timestamp_already_set(request, transition, "resolved_at")
        data["party"] = result.party.value
        data["approved"] = payload.approved
        data["outcome"] = result.outcome.value
        data["forced"] = result.forced
        if payload.approved:
            slot = result.tenant_slot if result.party == Party.TENANT else result.landlord_slot
            data["rating"] = slot.rating
            data["feedback"] = slot.feedback
        else:
            data["rejection_reason"] = payload.rejection_reason.strip()

    elif transition == TransitionName.REOPEN:
        data["reason"] = _require_text(
            payload.reason,
            MIN_REOPEN_REASON_LENGTH,
            "reopen_reason_too_short",
            "Reopen reason",
            transition,
            request,
        )

    stage = CLOSED_STAGES.get(transition)
    if stage is not None:
        data["sla_met"] = stage_met(stage, request, now, sla_config)

    return data


def _timestamp_already_set(
    request: MaintenanceRequest, transition: TransitionName, field: str
) -> None:
    raise InvalidTransition(
        f"Field '{field}' is already set; duplicate or concurrent {transition.value}.",
        reason_code="timestamp_already_set",
        transition=transition,
        status=request.status,
    )


def apply_transition(
    request: MaintenanceRequest,
    command: TransitionCommand,
    now: datetime,
    *,
    sla_config: SLAConfig | None = None,
    landlord_override: bool = False,
) -> TransitionResult:
    """
    Применяет переход к снимку заявки.

    Args:
        request: Текущий снимок заявки.
        command: Тип перехода, участник и данные.
        now: Время перехода (UTC).
        sla_config: Нормативы SLA для фиксации флагов выполнения этапов.
        landlord_override: Разрешить арендодателю решать заявку без арендатора.

    Returns:
        Новый снимок и событие, которое нужно дописать в журнал.

    Raises:
        LifecycleError: любой из типизированных отказов; входной снимок
            при этом не меняется.
    """
    sla_config = sla_config or SLAConfig()
    now = as_utc(now)
    transition = command.type

    try:
        check_transition(command.actor, request, transition)

        if now < request.updated_at:
            raise InvalidTransition(
                f"Transition time {now.isoformat()} precedes the last event "
                f"at {request.updated_at.isoformat()}.",
                reason_code="non_monotonic_timestamp",
                transition=transition,
                status=request.status,
            )

        field = TIMESTAMP_FIELDS.get(transition)
        if field is not None and getattr(request, field) is not None:
            _timestamp_already_set(request, transition, field)

        payload = _parse_payload(command, request)
        data = _build_payload(
            request, command, payload, now, sla_config, landlord_override
        )
    except LifecycleError as e:
        logger.warning(
            f"Transition {transition.value} on request {request.id} by "
            f"{command.actor.id} ({command.actor.role.value}) refused: {e}"
        )
        raise

    sequence = request.version + 1
    event = Event(
        event_id=Event.make_id(request.id, sequence),
        request_id=request.id,
        sequence=sequence,
        event_type=EventType.for_transition(transition),
        actor_id=command.actor.id,
        actor_role=command.actor.role,
        timestamp=now,
        payload=data,
    )
    new_state = _reduce(request, event)

    logger.info(
        f"Request {request.id}: {transition.value} by {command.actor.id} "
        f"({request.status.value} -> {new_state.status.value}), version {sequence}."
    )
    return TransitionResult(new_state=new_state, emitted_event=event)


def _initial_state(event: Event) -> MaintenanceRequest:
    return MaintenanceRequest(
        id=event.request_id,
        created_at=event.timestamp,
        updated_at=event.timestamp,
        version=event.sequence,
        **event.payload,
    )


def _reduce(request: MaintenanceRequest, event: Event) -> MaintenanceRequest:
    """Свертка одного события поверх снимка."""
    payload = event.payload
    ts = event.timestamp
    update: dict[str, Any] = {"version": event.sequence, "updated_at": ts}
    kind = event.event_type

    if kind == EventType.START_REVIEW:
        update.update(
            status=RequestStatus.UNDER_REVIEW,
            review_started_at=ts,
            sla_response_met=payload.get("sla_met"),
        )
    elif kind == EventType.APPROVE:
        update.update(status=RequestStatus.APPROVED, approved_at=ts)
    elif kind == EventType.REJECT:
        update.update(status=RequestStatus.REJECTED, rejected_at=ts)
    elif kind == EventType.ASSIGN:
        update.update(
            status=RequestStatus.ASSIGNED,
            assignee_id=payload["assignee_id"],
            assignee_name=payload.get("assignee_name"),
            assigned_at=ts,
            sla_assignment_met=payload.get("sla_met"),
        )
    elif kind == EventType.ACCEPT:
        update.update(
            status=RequestStatus.IN_PROGRESS,
            accepted_at=ts,
            sla_acceptance_met=payload.get("sla_met"),
        )
    elif kind == EventType.DECLINE:
        # Заявка остаётся в assigned и ждёт нового исполнителя
        update.update(
            status=RequestStatus.ASSIGNED,
            assignee_id=None,
            assignee_name=None,
            assigned_at=None,
            sla_assignment_met=None,
            sla_acceptance_met=None,
        )
    elif kind == EventType.COMPLETE_WORK:
        cost = payload.get("cost")
        update.update(
            status=RequestStatus.PENDING_APPROVAL,
            completed_at=ts,
            completion_notes=payload["completion_notes"],
            cost=CostBreakdown.model_validate(thaw(cost)) if cost else None,
            media=tuple(payload.get("media") or ()),
            completion_approved_by_tenant=None,
            completion_approved_by_landlord=None,
            sla_completion_met=payload.get("sla_met"),
        )
    elif kind == EventType.REVIEW:
        update.update(_reduce_review(request, event))
    elif kind == EventType.CLOSE:
        update.update(status=RequestStatus.CLOSED, closed_at=ts)
    elif kind == EventType.REOPEN:
        update.update(_rework_update(request))
        update["resolved_at"] = None
    else:
        raise InvalidTransition(
            f"Event {event.event_id} of type '{kind.value}' cannot be applied "
            "to an existing request.",
            reason_code="unexpected_event",
            status=request.status,
        )

    return request.model_copy(update=update)


def _rework_update(request: MaintenanceRequest) -> dict[str, Any]:
    return {
        "status": RequestStatus.IN_PROGRESS,
        "completed_at": None,
        "completion_approved_by_tenant": None,
        "completion_approved_by_landlord": None,
        "rework_count": request.rework_count + 1,
    }


def _reduce_review(request: MaintenanceRequest, event: Event) -> dict[str, Any]:
    payload = event.payload
    outcome = ConsensusOutcome(payload["outcome"])
    if outcome == ConsensusOutcome.REWORK:
        return _rework_update(request)

    slot = ApprovalSlot(
        approved=True,
        reviewer_id=event.actor_id,
        reviewed_at=event.timestamp,
        rating=payload.get("rating"),
        feedback=payload.get("feedback"),
    )
    slot_field = (
        "completion_approved_by_tenant"
        if payload["party"] == "tenant"
        else "completion_approved_by_landlord"
    )
    update: dict[str, Any] = {slot_field: slot}
    if outcome == ConsensusOutcome.RESOLVED:
        update["status"] = RequestStatus.RESOLVED
        update["resolved_at"] = event.timestamp
    else:
        update["status"] = RequestStatus.PENDING_APPROVAL
    return update


def replay(events: Iterable[Event]) -> MaintenanceRequest:
    """
    Восстанавливает снимок заявки сверткой журнала событий.

    Raises:
        InvalidTransition: журнал пуст, не начинается с created или
            содержит разрыв в нумерации.
    """
    state: MaintenanceRequest | None = None
    for event in sorted(events, key=lambda e: e.sequence):
        if state is None:
            if event.event_type != EventType.CREATED or event.sequence != 1:
                raise InvalidTransition(
                    f"Event log must start with 'created', got {event.event_type.value} "
                    f"#{event.sequence}.",
                    reason_code="corrupt_event_log",
                )
            state = _initial_state(event)
            continue
        if event.sequence != state.version + 1:
            raise InvalidTransition(
                f"Event log gap for request {state.id}: expected #{state.version + 1}, "
                f"got #{event.sequence}.",
                reason_code="corrupt_event_log",
                status=state.status,
            )
        state = _reduce(state, event)

    if state is None:
        raise InvalidTransition("Event log is empty.", reason_code="corrupt_event_log")
    return state


def target_status(transition: TransitionName) -> RequestStatus | None:
    """Целевой статус перехода; None для приёмки, где его решает консенсус."""
    return TRANSITION_RULES[transition].target
