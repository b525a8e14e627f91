"""
Модели данных, связанные с заявкой на ремонт.

Снимок заявки неизменяем: любое изменение выполняется движком через
model_copy и сопровождается событием в журнале.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field


class RequestStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    PENDING_APPROVAL = "pending_approval"
    RESOLVED = "resolved"
    CLOSED = "closed"


# Из этих статусов переходы невозможны
TERMINAL_STATUSES = frozenset({RequestStatus.CLOSED, RequestStatus.REJECTED})


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    URGENT = "urgent"
    EMERGENCY = "emergency"


class CostBreakdown(BaseModel):
    """
    Разбивка стоимости выполненных работ.
    """

    model_config = ConfigDict(frozen=True)

    labor: Decimal = Field(default=Decimal("0"), ge=0)
    material: Decimal = Field(default=Decimal("0"), ge=0)
    artisan_fee: Decimal = Field(default=Decimal("0"), ge=0)
    other: Decimal = Field(default=Decimal("0"), ge=0)

    @computed_field
    @property
    def total(self) -> Decimal:
        return self.labor + self.material + self.artisan_fee + self.other


class ApprovalSlot(BaseModel):
    """
    Отзыв одной из сторон (арендатора или арендодателя) о выполненной работе.
    """

    model_config = ConfigDict(frozen=True)

    approved: bool
    reviewer_id: str
    reviewed_at: datetime
    rating: int | None = Field(default=None, ge=1, le=5)
    feedback: str | None = None


class MaintenanceRequest(BaseModel):
    """
    Снимок заявки на техническое обслуживание.

    Статус и временные метки являются проекцией журнала событий;
    version равен числу событий, свернутых в этот снимок.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    request_number: str
    category_id: str | None = None
    priority: Priority = Priority.NORMAL
    title: str
    description: str | None = None
    property_id: str | None = None
    unit_id: str | None = None

    tenant_id: str
    landlord_id: str
    assignee_id: str | None = None
    assignee_name: str | None = None

    status: RequestStatus = RequestStatus.PENDING
    created_at: datetime
    review_started_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    assigned_at: datetime | None = None
    accepted_at: datetime | None = None
    completed_at: datetime | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    # Время последнего события журнала
    updated_at: datetime

    completion_notes: str | None = None
    cost: CostBreakdown | None = None
    media: tuple[str, ...] = ()

    completion_approved_by_tenant: ApprovalSlot | None = None
    completion_approved_by_landlord: ApprovalSlot | None = None

    # Фиксируются в момент закрытия этапа и больше не пересчитываются
    sla_response_met: bool | None = None
    sla_assignment_met: bool | None = None
    sla_acceptance_met: bool | None = None
    sla_completion_met: bool | None = None

    rework_count: int = 0
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

