"""
Общие фикстуры: участники заявки и помощники для прогона жизненного цикла.
"""

from datetime import timedelta

import pytest

from lifecycle.engine.machine import apply_transition, create_request
from lifecycle.engine.sla import SLAConfig
from lifecycle.models.command import TransitionCommand
from lifecycle.models.event import Actor, TransitionName
from lifecycle.models.request import Priority
from tests.helpers import CARETAKER_X, LANDLORD, T0, TENANT


@pytest.fixture
def sla_config() -> SLAConfig:
    return SLAConfig()


@pytest.fixture
def created():
    """Результат создания заявки арендатором TENANT: снимок и событие created."""
    return create_request(
        request_id="req-1",
        request_number="MR-0001",
        tenant_id=TENANT.id,
        landlord_id=LANDLORD.id,
        title="Течёт кран на кухне",
        priority=Priority.URGENT,
        now=T0,
    )


@pytest.fixture
def new_request(created):
    """Заявка в статусе pending."""
    return created.new_state


@pytest.fixture
def step(sla_config):
    """
    Применяет переход через заданное число минут после последнего события.
    Возвращает TransitionResult.
    """

    def _step(
        request,
        transition: TransitionName,
        actor: Actor,
        payload: dict | None = None,
        minutes: float = 10,
        landlord_override: bool = False,
    ):
        command = TransitionCommand(type=transition, actor=actor, payload=payload or {})
        return apply_transition(
            request,
            command,
            request.updated_at + timedelta(minutes=minutes),
            sla_config=sla_config,
            landlord_override=landlord_override,
        )

    return _step


@pytest.fixture
def completed_request(new_request, step):
    """Заявка, прошедшая путь до pending_approval, с журналом событий."""
    events = []
    request = new_request
    for transition, actor, payload in [
        (TransitionName.START_REVIEW, LANDLORD, None),
        (TransitionName.APPROVE, LANDLORD, None),
        (TransitionName.ASSIGN, LANDLORD, {"assignee_id": CARETAKER_X.id}),
        (TransitionName.ACCEPT, CARETAKER_X, None),
        (TransitionName.COMPLETE_WORK, CARETAKER_X, {"completion_notes": "fixed leak"}),
    ]:
        result = step(request, transition, actor, payload)
        events.append(result.emitted_event)
        request = result.new_state
    return request, events
