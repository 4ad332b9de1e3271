"""Pure rules of the three-department review workflow.

Nothing in this module touches storage. Services load the entity, call
these functions to validate and compute the transition, then persist the
result and hand the derived notification/audit drafts to their collaborators.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from clearance.domain.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationFailedError
from clearance.domain.models import (
    AuditAction,
    DepartmentReview,
    EntityType,
    Flight,
    NotificationType,
    ReviewableEntity,
    UserRole,
)
from clearance.domain.permissions import can_review_department, department_for_role
from clearance.domain.state_machine import (
    DEPARTMENT_LABELS,
    Department,
    OperationalStatus,
    OverallStatus,
    ReviewDecision,
    ReviewStatus,
    aggregate_overall_status,
)

ENTITY_LABELS: dict[EntityType, str] = {
    EntityType.PILOT_PROFILE: "Profile",
    EntityType.DRONE: "Drone",
    EntityType.FLIGHT: "Flight",
}

ENTITY_NOUNS: dict[EntityType, str] = {
    EntityType.PILOT_PROFILE: "profile",
    EntityType.DRONE: "drone",
    EntityType.FLIGHT: "flight request",
}

REAPPLY_ONLY_REJECTED = "Can only re-apply for rejected applications."


@dataclass(frozen=True)
class NotificationDraft:
    user_id: str
    type: NotificationType
    title: str
    message: str
    entity_type: str | None = None
    entity_id: str | None = None


@dataclass(frozen=True)
class AuditDraft:
    actor_id: str | None
    action: AuditAction
    entity_type: str
    entity_id: str
    description: str
    detail: dict[str, Any] = field(default_factory=dict)


def parse_entity_type(raw: str) -> EntityType:
    try:
        return EntityType(raw)
    except ValueError as exc:
        raise ValidationFailedError(f"unknown entity type: {raw}") from exc


def parse_decision(raw: str | None) -> ReviewDecision:
    if raw is None:
        raise ValidationFailedError("decision is required")
    try:
        return ReviewDecision(raw)
    except ValueError as exc:
        raise ValidationFailedError(
            f"decision must be one of: {', '.join(item.value for item in ReviewDecision)}"
        ) from exc


def resolve_department(raw: str | None, actor_role: UserRole) -> Department:
    """Pick the department a review is written for.

    Department reviewers may omit it and get their own; admins must name one.
    """
    if raw is None:
        if actor_role == UserRole.ADMIN:
            raise ValidationFailedError("department is required")
        own = department_for_role(actor_role)
        if own is None:
            raise ForbiddenError(f"role {actor_role.value} cannot submit reviews")
        return own
    try:
        return Department(raw)
    except ValueError as exc:
        raise ValidationFailedError(f"unknown department: {raw}") from exc


def guard_review(
    entity: ReviewableEntity | None,
    *,
    owner_exists: bool,
    department: Department,
    actor_role: UserRole,
) -> None:
    if entity is None or not owner_exists:
        raise NotFoundError("entity not found")
    if not can_review_department(actor_role, department):
        raise ForbiddenError(f"role {actor_role.value} cannot review for {department.value}")
    if entity.overall_status == OverallStatus.REJECTED:
        raise InvalidStateError("application is rejected; re-application required before further review")
    if isinstance(entity, Flight) and entity.operational_status != OperationalStatus.PENDING:
        raise InvalidStateError("flight reviews are frozen once the flight has started")


def apply_department_decision(
    reviews: dict[Department, DepartmentReview],
    *,
    department: Department,
    decision: ReviewDecision,
    reviewer_id: str,
    reviewed_at: datetime,
    notes: str | None,
) -> tuple[dict[Department, DepartmentReview], OverallStatus]:
    previous = reviews[department]
    updated = dict(reviews)
    updated[department] = DepartmentReview(
        status=ReviewStatus(decision.value),
        reviewed_by=reviewer_id,
        reviewed_at=reviewed_at,
        notes=notes if notes is not None else previous.notes,
    )
    overall = aggregate_overall_status(updated[item].status for item in Department)
    return updated, overall


def guard_reapply(entity: ReviewableEntity) -> None:
    if entity.overall_status != OverallStatus.REJECTED:
        raise InvalidStateError(REAPPLY_ONLY_REJECTED)


def reset_reviews() -> dict[Department, DepartmentReview]:
    return {department: DepartmentReview() for department in Department}


def _outcome_sentence(entity_type: EntityType, overall_status: OverallStatus) -> str:
    noun = ENTITY_NOUNS[entity_type]
    if overall_status == OverallStatus.APPROVED:
        return f"Your {noun} is now fully approved!"
    if overall_status == OverallStatus.REJECTED:
        return f"Your {noun} has been rejected."
    return "Awaiting review from other departments."


def derive_review_notification(
    *,
    entity_type: EntityType,
    entity_id: str,
    owner_user_id: str,
    department: Department,
    decision: ReviewDecision,
    overall_status: OverallStatus,
    notes: str | None,
) -> NotificationDraft:
    department_label = DEPARTMENT_LABELS[department]
    approved = decision == ReviewDecision.APPROVED
    message = (
        f"Your {ENTITY_NOUNS[entity_type]} has been {decision.value} by {department_label}. "
        f"{_outcome_sentence(entity_type, overall_status)}"
    )
    if notes:
        message = f"{message} Notes: {notes}"
    return NotificationDraft(
        user_id=owner_user_id,
        type=NotificationType.SUCCESS if approved else NotificationType.ERROR,
        title=f"{department_label} {ENTITY_LABELS[entity_type]} Review {'Approved' if approved else 'Rejected'}",
        message=message,
        entity_type=entity_type.value,
        entity_id=entity_id,
    )


def derive_review_audit(
    *,
    entity_type: EntityType,
    entity_id: str,
    actor_id: str,
    department: Department,
    decision: ReviewDecision,
    notes: str | None,
    previous_overall_status: OverallStatus,
    overall_status: OverallStatus,
    reviewed_at: datetime,
) -> AuditDraft:
    return AuditDraft(
        actor_id=actor_id,
        action=AuditAction.APPROVE if decision == ReviewDecision.APPROVED else AuditAction.REJECT,
        entity_type=entity_type.value,
        entity_id=entity_id,
        description=(
            f"{ENTITY_LABELS[entity_type]} {decision.value} by {DEPARTMENT_LABELS[department]} reviewer"
        ),
        detail={
            "department": department.value,
            "decision": decision.value,
            "notes": notes,
            "previous_overall_status": previous_overall_status.value,
            "overall_status": overall_status.value,
            "reviewed_at": reviewed_at.isoformat(),
        },
    )


def derive_reapply_audit(
    *,
    entity_type: EntityType,
    entity_id: str,
    actor_id: str,
    previous_reviews: dict[str, Any],
    reset_at: datetime,
) -> AuditDraft:
    return AuditDraft(
        actor_id=actor_id,
        action=AuditAction.UPDATE,
        entity_type=entity_type.value,
        entity_id=entity_id,
        description=f"{ENTITY_LABELS[entity_type]} re-applied after rejection",
        detail={
            "action_type": "reapply",
            "previous_status": OverallStatus.REJECTED.value,
            "new_status": OverallStatus.PENDING.value,
            "previous_reviews": previous_reviews,
            "reset_at": reset_at.isoformat(),
        },
    )
