"""
Приёмка выполненных работ двумя сторонами.

Арендатор и арендодатель независимо одобряют или отклоняют работу.
Заявка решена, только когда одобрили оба; отказ любой стороны
возвращает работу на доработку и начинает новый цикл приёмки.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from lifecycle.core.exceptions import (
    AlreadyReviewed,
    InvalidTransition,
    PreconditionFailed,
    Unauthorized,
)
from lifecycle.engine.authority import Party, review_party
from lifecycle.models.command import ReviewPayload
from lifecycle.models.event import Actor, TransitionName
from lifecycle.models.request import ApprovalSlot, MaintenanceRequest, RequestStatus

logger = logging.getLogger(__name__)

MIN_REJECTION_REASON_LENGTH = 10


class ConsensusOutcome(str, Enum):
    # Ждём отзыв второй стороны
    WAITING = "waiting"
    RESOLVED = "resolved"
    REWORK = "rework"


@dataclass(frozen=True)
class ConsensusResult:
    outcome: ConsensusOutcome
    party: Party
    tenant_slot: ApprovalSlot | None
    landlord_slot: ApprovalSlot | None
    # Заявка решена одобрением арендодателя без арендатора
    forced: bool = False

    @property
    def status(self) -> RequestStatus:
        if self.outcome == ConsensusOutcome.RESOLVED:
            return RequestStatus.RESOLVED
        if self.outcome == ConsensusOutcome.REWORK:
            return RequestStatus.IN_PROGRESS
        return RequestStatus.PENDING_APPROVAL


def current_slot(request: MaintenanceRequest, party: Party) -> ApprovalSlot | None:
    if party == Party.TENANT:
        return request.completion_approved_by_tenant
    return request.completion_approved_by_landlord


def resolve_review(
    request: MaintenanceRequest,
    actor: Actor,
    review: ReviewPayload,
    now: datetime,
    *,
    landlord_override: bool = False,
) -> ConsensusResult:
    """
    Применяет отзыв одной стороны к слотам приёмки.

    Args:
        request: Заявка в статусе pending_approval.
        actor: Арендатор или арендодатель (super_admin).
        review: Решение стороны.
        now: Время отзыва.
        landlord_override: Одобрение арендодателя решает заявку без арендатора.

    Raises:
        InvalidTransition: заявка не ожидает приёмки.
        AlreadyReviewed: сторона уже оставила отзыв в этом цикле.
        PreconditionFailed: нет оценки или причина отказа слишком короткая.
    """
    transition = TransitionName.REVIEW
    if request.status != RequestStatus.PENDING_APPROVAL:
        raise InvalidTransition(
            f"Completion can be reviewed only in 'pending_approval', not '{request.status.value}'.",
            transition=transition,
            status=request.status,
        )

    party = review_party(actor)
    if party is None:
        raise Unauthorized(
            "Only the tenant or the landlord can review completed work.",
            reason_code="role_not_allowed",
            transition=transition,
            status=request.status,
        )

    if current_slot(request, party) is not None:
        raise AlreadyReviewed(
            f"The {party.value} has already reviewed this completion.",
            transition=transition,
            status=request.status,
        )

    if not review.approved:
        reason = (review.rejection_reason or "").strip()
        if len(reason) < MIN_REJECTION_REASON_LENGTH:
            raise PreconditionFailed(
                f"Rejection reason must be at least {MIN_REJECTION_REASON_LENGTH} characters.",
                reason_code="rejection_reason_too_short",
                transition=transition,
                status=request.status,
            )
        logger.info(
            f"Completion of request {request.id} rejected by {party.value} {actor.id}; "
            "returning to rework."
        )
        return ConsensusResult(
            outcome=ConsensusOutcome.REWORK,
            party=party,
            tenant_slot=None,
            landlord_slot=None,
        )

    if party == Party.TENANT and review.rating is None:
        raise PreconditionFailed(
            "Tenant must rate the work when approving it.",
            reason_code="rating_required",
            transition=transition,
            status=request.status,
        )

    slot = ApprovalSlot(
        approved=True,
        reviewer_id=actor.id,
        reviewed_at=now,
        rating=review.rating,
        feedback=(review.feedback or "").strip() or None,
    )
    tenant_slot = slot if party == Party.TENANT else request.completion_approved_by_tenant
    landlord_slot = (
        slot if party == Party.LANDLORD else request.completion_approved_by_landlord
    )

    both_approved = (
        tenant_slot is not None
        and tenant_slot.approved
        and landlord_slot is not None
        and landlord_slot.approved
    )
    if both_approved:
        outcome, forced = ConsensusOutcome.RESOLVED, False
    elif party == Party.LANDLORD and landlord_override:
        outcome, forced = ConsensusOutcome.RESOLVED, True
        logger.warning(
            f"Request {request.id} resolved by landlord override without tenant approval."
        )
    else:
        outcome, forced = ConsensusOutcome.WAITING, False

    return ConsensusResult(
        outcome=outcome,
        party=party,
        tenant_slot=tenant_slot,
        landlord_slot=landlord_slot,
        forced=forced,
    )
