"""
Тесты для машины состояний заявки.
"""

from datetime import timedelta

import pytest

from lifecycle.core.exceptions import (
    InvalidTransition,
    PreconditionFailed,
    TerminalState,
    Unauthorized,
)
from lifecycle.engine.machine import (
    apply_transition,
    create_request,
    replay,
    target_status,
)
from lifecycle.engine.sla import (
    SLAStage,
    SLAStatus,
    compliance_summary,
    compute_deadline,
)
from lifecycle.models.command import TransitionCommand
from lifecycle.models.event import EventType, TransitionName
from lifecycle.models.request import RequestStatus
from tests.helpers import (
    CARETAKER_X,
    CARETAKER_Y,
    LANDLORD,
    SUPER_ADMIN,
    T0,
    TENANT,
)

T = TransitionName


def test_create_request_starts_pending(new_request):
    """Тест: Новая заявка в статусе pending, версия 1, слоты приёмки пусты."""
    assert new_request.status == RequestStatus.PENDING
    assert new_request.version == 1
    assert new_request.created_at == T0
    assert new_request.completion_approved_by_tenant is None
    assert new_request.completion_approved_by_landlord is None


def test_create_request_requires_title():
    """Тест: Заявку без заголовка создать нельзя."""
    with pytest.raises(PreconditionFailed) as exc_info:
        create_request(
            request_id="req-x",
            request_number="MR-X",
            tenant_id=TENANT.id,
            landlord_id=LANDLORD.id,
            title="   ",
            now=T0,
        )
    assert exc_info.value.reason_code == "title_required"


def test_happy_path_to_closed(new_request, step):
    """
    Тест: Полный цикл от создания до закрытия арендатором.
    """
    # Arrange
    events = []
    request = new_request
    plan = [
        (T.START_REVIEW, LANDLORD, None, RequestStatus.UNDER_REVIEW),
        (T.APPROVE, LANDLORD, None, RequestStatus.APPROVED),
        (T.ASSIGN, LANDLORD, {"assignee_id": CARETAKER_X.id}, RequestStatus.ASSIGNED),
        (T.ACCEPT, CARETAKER_X, None, RequestStatus.IN_PROGRESS),
        (
            T.COMPLETE_WORK,
            CARETAKER_X,
            {"completion_notes": "fixed leak"},
            RequestStatus.PENDING_APPROVAL,
        ),
        (T.REVIEW, TENANT, {"approved": True, "rating": 5}, RequestStatus.PENDING_APPROVAL),
        (T.REVIEW, LANDLORD, {"approved": True}, RequestStatus.RESOLVED),
        (T.CLOSE, TENANT, None, RequestStatus.CLOSED),
    ]

    # Act & Assert
    for transition, actor, payload, expected in plan:
        result = step(request, transition, actor, payload)
        assert result.new_state.status == expected
        assert result.emitted_event.event_type == EventType(transition.value)
        assert result.emitted_event.sequence == request.version + 1
        events.append(result.emitted_event)
        request = result.new_state

    assert request.closed_at is not None
    assert request.completion_approved_by_tenant.rating == 5
    assert request.completion_approved_by_landlord.approved is True
    assert request.version == 9


def test_completion_rejection_returns_to_rework(completed_request, step):
    """
    Тест: Отказ арендодателя в приёмке возвращает заявку в работу
    и очищает оба слота.
    """
    request, _ = completed_request
    request = step(request, T.REVIEW, TENANT, {"approved": True, "rating": 4}).new_state

    result = step(
        request,
        T.REVIEW,
        LANDLORD,
        {"approved": False, "rejection_reason": "paint peeling"},
    )

    state = result.new_state
    assert state.status == RequestStatus.IN_PROGRESS
    assert state.completion_approved_by_tenant is None
    assert state.completion_approved_by_landlord is None
    assert state.completed_at is None
    assert state.rework_count == 1
    assert result.emitted_event.payload["rejection_reason"] == "paint peeling"

    # Новый цикл приёмки возможен
    again = step(state, T.COMPLETE_WORK, CARETAKER_X, {"completion_notes": "repainted"})
    assert again.new_state.status == RequestStatus.PENDING_APPROVAL
    assert again.new_state.completion_notes == "repainted"


def test_assign_on_pending_is_invalid(new_request, step):
    """Тест: Назначить исполнителя до одобрения нельзя."""
    with pytest.raises(InvalidTransition) as exc_info:
        step(new_request, T.ASSIGN, LANDLORD, {"assignee_id": CARETAKER_X.id})

    error = exc_info.value
    assert error.transition == "assign"
    assert error.status == "pending"
    assert error.reason_code == "invalid_source_state"


def test_accept_by_other_caretaker_is_unauthorized(new_request, step):
    """Тест: Принять заявку может только назначенный исполнитель."""
    request = new_request
    for transition, payload in [
        (T.START_REVIEW, None),
        (T.APPROVE, None),
        (T.ASSIGN, {"assignee_id": CARETAKER_X.id}),
    ]:
        request = step(request, transition, LANDLORD, payload).new_state

    with pytest.raises(Unauthorized) as exc_info:
        step(request, T.ACCEPT, CARETAKER_Y)
    assert exc_info.value.reason_code == "not_assignee"


def test_reject_requires_reason_and_is_terminal(new_request, step):
    """Тест: Отклонение требует причину, после него переходы невозможны."""
    request = step(new_request, T.START_REVIEW, LANDLORD).new_state

    with pytest.raises(PreconditionFailed):
        step(request, T.REJECT, LANDLORD, {"reason": "  "})

    result = step(request, T.REJECT, LANDLORD, {"reason": "Not a defect"})
    assert result.new_state.status == RequestStatus.REJECTED
    assert result.emitted_event.payload == {"reason": "Not a defect"}

    with pytest.raises(TerminalState):
        step(result.new_state, T.APPROVE, LANDLORD)


def test_decline_clears_assignee_and_allows_reassignment(new_request, step, sla_config):
    """
    Тест: Отказ исполнителя снимает назначение, заявка остаётся в assigned
    и может быть назначена другому.
    """
    request = new_request
    for transition, payload in [
        (T.START_REVIEW, None),
        (T.APPROVE, None),
        (T.ASSIGN, {"assignee_id": CARETAKER_X.id}),
    ]:
        request = step(request, transition, LANDLORD, payload).new_state

    with pytest.raises(PreconditionFailed) as exc_info:
        step(request, T.DECLINE, CARETAKER_X, {"reason": "busy"})
    assert exc_info.value.reason_code == "decline_reason_too_short"

    declined = step(
        request,
        T.DECLINE,
        CARETAKER_X,
        {"reason": "No parts available this week"},
        minutes=60 * 60,
    ).new_state
    assert declined.status == RequestStatus.ASSIGNED
    assert declined.assignee_id is None
    assert declined.assigned_at is None

    # Этап назначения снова открыт, прежний флаг SLA не действует
    assert declined.sla_assignment_met is None
    assignment = compute_deadline(
        SLAStage.ASSIGNMENT, declined, declined.updated_at, sla_config
    )
    assert assignment.status == SLAStatus.OVERDUE
    assert assignment.is_met is None
    assert compliance_summary(declined) is None

    # Пока исполнитель не назначен, принимать заявку некому
    with pytest.raises(Unauthorized):
        step(declined, T.ACCEPT, CARETAKER_X)

    reassigned = step(
        declined, T.ASSIGN, LANDLORD, {"assignee_id": CARETAKER_Y.id}
    ).new_state
    assert reassigned.assignee_id == CARETAKER_Y.id
    assert reassigned.assigned_at is not None
    assert reassigned.sla_assignment_met is False

    with pytest.raises(InvalidTransition) as exc_info:
        step(reassigned, T.ASSIGN, LANDLORD, {"assignee_id": CARETAKER_X.id})
    assert exc_info.value.reason_code == "already_assigned"


def test_complete_work_requires_notes(completed_request, step):
    """Тест: Без описания выполненных работ сдать заявку нельзя."""
    request, _ = completed_request
    rework = step(
        request,
        T.REVIEW,
        TENANT,
        {"approved": False, "rejection_reason": "still dripping"},
    ).new_state

    with pytest.raises(PreconditionFailed) as exc_info:
        step(rework, T.COMPLETE_WORK, CARETAKER_X, {"completion_notes": ""})
    assert exc_info.value.reason_code == "completion_notes_required"


def test_complete_work_records_cost_and_media(new_request, step):
    """Тест: Стоимость и ссылки на фото сохраняются в снимке и событии."""
    request = new_request
    for transition, actor, payload in [
        (T.START_REVIEW, LANDLORD, None),
        (T.APPROVE, LANDLORD, None),
        (T.ASSIGN, LANDLORD, {"assignee_id": CARETAKER_X.id}),
        (T.ACCEPT, CARETAKER_X, None),
    ]:
        request = step(request, transition, actor, payload).new_state

    result = step(
        request,
        T.COMPLETE_WORK,
        CARETAKER_X,
        {
            "completion_notes": "Replaced the tap",
            "cost": {"labor": "1500", "material": "2300.50"},
            "media": ["https://drive.example/photo-1"],
        },
    )

    state = result.new_state
    assert str(state.cost.total) == "3800.50"
    assert state.media == ("https://drive.example/photo-1",)
    assert result.emitted_event.payload["cost"]["labor"] == "1500"


def test_invalid_payload_is_precondition_failure(completed_request, step):
    """Тест: Оценка вне диапазона 1–5 отклоняется как нарушение предусловия."""
    request, _ = completed_request
    with pytest.raises(PreconditionFailed) as exc_info:
        step(request, T.REVIEW, TENANT, {"approved": True, "rating": 7})
    assert exc_info.value.reason_code == "invalid_payload"


def test_reopen_after_resolution(completed_request, step):
    """Тест: Арендатор может переоткрыть решённую заявку с причиной."""
    request, _ = completed_request
    request = step(request, T.REVIEW, TENANT, {"approved": True, "rating": 3}).new_state
    request = step(request, T.REVIEW, LANDLORD, {"approved": True}).new_state
    assert request.status == RequestStatus.RESOLVED

    with pytest.raises(Unauthorized):
        step(request, T.REOPEN, LANDLORD, {"reason": "Leak came back again"})
    with pytest.raises(PreconditionFailed):
        step(request, T.REOPEN, TENANT, {"reason": "again"})

    reopened = step(request, T.REOPEN, TENANT, {"reason": "Leak came back again"})
    state = reopened.new_state
    assert state.status == RequestStatus.IN_PROGRESS
    assert state.resolved_at is None
    assert state.completed_at is None
    assert state.completion_approved_by_tenant is None
    assert state.rework_count == 1


def test_failure_leaves_snapshot_untouched(completed_request, step):
    """Тест: Неудачный переход не меняет входной снимок."""
    request, _ = completed_request
    before = request.model_dump()

    with pytest.raises(PreconditionFailed):
        step(request, T.REVIEW, LANDLORD, {"approved": False, "rejection_reason": "bad"})

    assert request.model_dump() == before


def test_non_monotonic_timestamp_is_rejected(new_request):
    """Тест: Переход не может быть раньше последнего события."""
    command = TransitionCommand(type=T.START_REVIEW, actor=LANDLORD)
    with pytest.raises(InvalidTransition) as exc_info:
        apply_transition(new_request, command, T0 - timedelta(minutes=1))
    assert exc_info.value.reason_code == "non_monotonic_timestamp"


def test_duplicate_timestamp_is_invariant_violation(new_request, step):
    """
    Тест: Повторная установка временной метки считается нарушением инварианта.
    """
    request = step(new_request, T.START_REVIEW, LANDLORD).new_state
    corrupted = request.model_copy(update={"approved_at": request.updated_at})

    with pytest.raises(InvalidTransition) as exc_info:
        step(corrupted, T.APPROVE, LANDLORD)
    assert exc_info.value.reason_code == "timestamp_already_set"


def test_super_admin_acts_for_landlord(new_request, step):
    """Тест: super_admin обходит проверку владения, но не проверку статуса."""
    request = step(new_request, T.START_REVIEW, SUPER_ADMIN).new_state
    assert request.status == RequestStatus.UNDER_REVIEW

    with pytest.raises(InvalidTransition):
        step(request, T.START_REVIEW, SUPER_ADMIN)


def test_replay_matches_last_snapshot(completed_request, new_request):
    """Тест: Свертка журнала совпадает с последним снимком."""
    request, events = completed_request
    created = create_request(
        request_id="req-1",
        request_number="MR-0001",
        tenant_id=TENANT.id,
        landlord_id=LANDLORD.id,
        title="Течёт кран на кухне",
        priority=new_request.priority,
        now=T0,
    ).emitted_event

    assert replay([created, *events]) == request
    # Порядок входа не важен, важна нумерация
    assert replay(list(reversed([created, *events]))) == request


def test_replay_rejects_gaps(completed_request, new_request):
    """Тест: Разрыв в нумерации журнала обнаруживается."""
    _, events = completed_request
    created = create_request(
        request_id="req-1",
        request_number="MR-0001",
        tenant_id=TENANT.id,
        landlord_id=LANDLORD.id,
        title="Течёт кран на кухне",
        now=T0,
    ).emitted_event

    with pytest.raises(InvalidTransition) as exc_info:
        replay([created, *events[1:]])
    assert exc_info.value.reason_code == "corrupt_event_log"

    with pytest.raises(InvalidTransition):
        replay([])


@pytest.mark.parametrize(
    "transition, expected",
    [
        (T.START_REVIEW, RequestStatus.UNDER_REVIEW),
        (T.ACCEPT, RequestStatus.IN_PROGRESS),
        (T.CLOSE, RequestStatus.CLOSED),
        (T.REVIEW, None),
    ],
)
def test_target_status(transition, expected):
    assert target_status(transition) == expected


def test_statuses_follow_transition_graph(completed_request, step):
    """
    Тест: В журнале каждый новый статус достижим по ребру из предыдущего.
    """
    allowed_edges = {
        (RequestStatus.PENDING, RequestStatus.UNDER_REVIEW),
        (RequestStatus.UNDER_REVIEW, RequestStatus.APPROVED),
        (RequestStatus.UNDER_REVIEW, RequestStatus.REJECTED),
        (RequestStatus.APPROVED, RequestStatus.ASSIGNED),
        (RequestStatus.ASSIGNED, RequestStatus.ASSIGNED),
        (RequestStatus.ASSIGNED, RequestStatus.IN_PROGRESS),
        (RequestStatus.IN_PROGRESS, RequestStatus.PENDING_APPROVAL),
        (RequestStatus.PENDING_APPROVAL, RequestStatus.PENDING_APPROVAL),
        (RequestStatus.PENDING_APPROVAL, RequestStatus.IN_PROGRESS),
        (RequestStatus.PENDING_APPROVAL, RequestStatus.RESOLVED),
        (RequestStatus.RESOLVED, RequestStatus.CLOSED),
        (RequestStatus.RESOLVED, RequestStatus.IN_PROGRESS),
    }
    request, events = completed_request
    history = [request]
    for transition, actor, payload in [
        (T.REVIEW, TENANT, {"approved": False, "rejection_reason": "still dripping"}),
        (T.COMPLETE_WORK, CARETAKER_X, {"completion_notes": "new washer"}),
        (T.REVIEW, LANDLORD, {"approved": True}),
        (T.REVIEW, TENANT, {"approved": True, "rating": 5}),
        (T.REOPEN, TENANT, {"reason": "dripping again at night"}),
        (T.COMPLETE_WORK, CARETAKER_X, {"completion_notes": "replaced cartridge"}),
        (T.REVIEW, TENANT, {"approved": True, "rating": 4}),
        (T.REVIEW, LANDLORD, {"approved": True}),
        (T.CLOSE, TENANT, None),
    ]:
        request = step(request, transition, actor, payload).new_state
        history.append(request)

    for previous, current in zip(history, history[1:]):
        assert (previous.status, current.status) in allowed_edges
    assert history[-1].status == RequestStatus.CLOSED
    assert history[-1].rework_count == 2
