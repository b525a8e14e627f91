"""
Расчёт сроков SLA по этапам заявки.

Этапы и их границы:
    response: от создания до начала рассмотрения арендодателем;
    assignment: от одобрения до назначения исполнителя;
    acceptance: от назначения до принятия работы исполнителем;
    completion: от принятия до сдачи работы на приёмку.

Срок этапа = время входа + норматив. Норматив этапа completion зависит от
приоритета, остальные фиксированы. Все значения вычисляются при чтении и
нигде не хранятся; сохраняется только флаг "уложились ли в срок",
фиксируемый движком при выходе из этапа.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from lifecycle.core.clock import as_utc
from lifecycle.core.config import Settings
from lifecycle.models.request import MaintenanceRequest, Priority


class SLAStage(str, Enum):
    RESPONSE = "response"
    ASSIGNMENT = "assignment"
    ACCEPTANCE = "acceptance"
    COMPLETION = "completion"


class SLAStatus(str, Enum):
    NOT_APPLICABLE = "not_applicable"
    ON_TIME = "on_time"
    APPROACHING = "approaching"
    OVERDUE = "overdue"
    MET = "met"


# (поле входа в этап, поле выхода из этапа)
STAGE_BOUNDS: dict[SLAStage, tuple[str, str]] = {
    SLAStage.RESPONSE: ("created_at", "review_started_at"),
    SLAStage.ASSIGNMENT: ("approved_at", "assigned_at"),
    SLAStage.ACCEPTANCE: ("assigned_at", "accepted_at"),
    SLAStage.COMPLETION: ("accepted_at", "completed_at"),
}

# Эскалация после двух доработок
ESCALATION_REWORK_THRESHOLD = 2


class SLAConfig(BaseModel):
    """
    Нормативы SLA в часах.

    Собирается из Settings, поэтому переопределяется переменными окружения
    (SLA_RESPONSE_HOURS, SLA_COMPLETION_URGENT_HOURS и т.д.).
    """

    model_config = ConfigDict(frozen=True)

    response_hours: float = Field(default=24, gt=0)
    assignment_hours: float = Field(default=48, gt=0)
    acceptance_hours: float = Field(default=24, gt=0)
    completion_hours: dict[Priority, float] = Field(
        default_factory=lambda: {
            Priority.EMERGENCY: 4,
            Priority.URGENT: 24,
            Priority.NORMAL: 72,
            Priority.LOW: 168,
        }
    )
    approaching_threshold: float = Field(default=0.25, gt=0, lt=1)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SLAConfig":
        return cls(
            response_hours=settings.sla_response_hours,
            assignment_hours=settings.sla_assignment_hours,
            acceptance_hours=settings.sla_acceptance_hours,
            completion_hours={
                Priority(priority): hours
                for priority, hours in settings.sla_completion_hours.items()
            },
            approaching_threshold=settings.sla_approaching_threshold,
        )

    def allowance(self, stage: SLAStage, priority: Priority) -> timedelta:
        if stage == SLAStage.RESPONSE:
            hours = self.response_hours
        elif stage == SLAStage.ASSIGNMENT:
            hours = self.assignment_hours
        elif stage == SLAStage.ACCEPTANCE:
            hours = self.acceptance_hours
        else:
            # Для неизвестного приоритета берём норматив normal
            hours = self.completion_hours.get(
                priority, self.completion_hours[Priority.NORMAL]
            )
        return timedelta(hours=hours)


class SLADeadline(BaseModel):
    """Производное состояние срока одного этапа на момент расчёта."""

    model_config = ConfigDict(frozen=True)

    stage: SLAStage
    deadline_at: datetime | None = None
    status: SLAStatus
    percentage_elapsed: float = 0.0
    time_remaining: timedelta | None = None
    # Сохранённый флаг из заявки; None, пока этап не закрыт
    is_met: bool | None = None


def _bounds(
    stage: SLAStage, request: MaintenanceRequest
) -> tuple[datetime | None, datetime | None]:
    entry_field, exit_field = STAGE_BOUNDS[stage]
    return getattr(request, entry_field), getattr(request, exit_field)


def met_flag_field(stage: SLAStage) -> str:
    return f"sla_{stage.value}_met"


def stage_deadline(
    stage: SLAStage, request: MaintenanceRequest, config: SLAConfig
) -> datetime | None:
    entry_at, _ = _bounds(stage, request)
    if entry_at is None:
        return None
    return entry_at + config.allowance(stage, request.priority)


def stage_met(
    stage: SLAStage,
    request: MaintenanceRequest,
    exit_at: datetime,
    config: SLAConfig,
) -> bool:
    """
    Уложился ли этап в срок, если он закрывается в момент exit_at.

    Вызывается движком при выходе из этапа; результат сохраняется в событии.
    """
    deadline = stage_deadline(stage, request, config)
    if deadline is None:
        return False
    return as_utc(exit_at) <= deadline


def compute_deadline(
    stage: SLAStage,
    request: MaintenanceRequest,
    now: datetime,
    config: SLAConfig,
) -> SLADeadline:
    now = as_utc(now)
    entry_at, exit_at = _bounds(stage, request)
    is_met = getattr(request, met_flag_field(stage))

    if entry_at is None:
        return SLADeadline(stage=stage, status=SLAStatus.NOT_APPLICABLE, is_met=is_met)

    allowance = config.allowance(stage, request.priority)
    deadline = entry_at + allowance

    if exit_at is not None:
        return SLADeadline(
            stage=stage,
            deadline_at=deadline,
            status=SLAStatus.MET,
            percentage_elapsed=_percentage(entry_at, exit_at, allowance),
            is_met=is_met,
        )

    remaining = deadline - now
    if now > deadline:
        status = SLAStatus.OVERDUE
    elif remaining <= allowance * config.approaching_threshold:
        status = SLAStatus.APPROACHING
    else:
        status = SLAStatus.ON_TIME

    return SLADeadline(
        stage=stage,
        deadline_at=deadline,
        status=status,
        percentage_elapsed=_percentage(entry_at, now, allowance),
        time_remaining=max(remaining, timedelta(0)),
        is_met=is_met,
    )


def _percentage(start: datetime, moment: datetime, allowance: timedelta) -> float:
    elapsed = (moment - start) / allowance * 100
    return max(0.0, min(100.0, elapsed))


def calculate_sla_deadlines(
    request: MaintenanceRequest, now: datetime, config: SLAConfig
) -> dict[SLAStage, SLADeadline]:
    """Сроки по всем четырём этапам заявки на момент now."""
    return {stage: compute_deadline(stage, request, now, config) for stage in SLAStage}


def compliance_summary(request: MaintenanceRequest) -> bool | None:
    """
    True, если все этапы закрыты в срок; False, если хотя бы один просрочен;
    None, пока заявка ещё в работе.
    """
    flags = [getattr(request, met_flag_field(stage)) for stage in SLAStage]
    if any(flag is False for flag in flags):
        return False
    if all(flag is True for flag in flags):
        return True
    return None


def format_time_remaining(remaining: timedelta | None) -> str:
    """Форматирует оставшееся время для отображения пользователю."""
    if remaining is None or remaining <= timedelta(0):
        return "Просрочено"

    minutes = int(remaining.total_seconds()) // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"осталось {days} д {hours % 24} ч"
    if hours > 0:
        return f"осталось {hours} ч {minutes % 60} мин"
    if minutes > 0:
        return f"осталось {minutes} мин"
    return "менее минуты"


def should_escalate(rework_count: int | None) -> bool:
    return (rework_count or 0) >= ESCALATION_REWORK_THRESHOLD


@dataclass(frozen=True)
class EscalationStatus:
    rework_count: int
    should_escalate: bool


def escalation_status(request: MaintenanceRequest) -> EscalationStatus:
    return EscalationStatus(
        rework_count=request.rework_count,
        should_escalate=should_escalate(request.rework_count),
    )
