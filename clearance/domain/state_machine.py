from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum


class Department(StrEnum):
    AIR_DEFENSE = "air_defense"
    LOGISTICS = "logistics"
    INTELLIGENCE = "intelligence"


DEPARTMENT_LABELS: dict[Department, str] = {
    Department.AIR_DEFENSE: "Air Defense",
    Department.LOGISTICS: "Logistics",
    Department.INTELLIGENCE: "Intelligence",
}


class ReviewStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewDecision(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


class OverallStatus(StrEnum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


def aggregate_overall_status(statuses: Iterable[ReviewStatus]) -> OverallStatus:
    """Combine department votes into one overall status.

    Rejection is absorbing: a single rejected vote rejects the whole
    application regardless of the others. Partial approval of any size
    collapses into ``under_review``.
    """
    values = [ReviewStatus(item) for item in statuses]
    if len(values) != len(Department):
        raise ValueError(f"expected {len(Department)} department statuses, got {len(values)}")
    if ReviewStatus.REJECTED in values:
        return OverallStatus.REJECTED
    if all(item == ReviewStatus.APPROVED for item in values):
        return OverallStatus.APPROVED
    if all(item == ReviewStatus.PENDING for item in values):
        return OverallStatus.PENDING
    return OverallStatus.UNDER_REVIEW


class OperationalStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


OPERATIONAL_TRANSITIONS: dict[OperationalStatus, set[OperationalStatus]] = {
    OperationalStatus.PENDING: {OperationalStatus.ACTIVE},
    OperationalStatus.ACTIVE: {OperationalStatus.COMPLETED},
    OperationalStatus.COMPLETED: set(),
}


def can_operational_transition(source: OperationalStatus, target: OperationalStatus) -> bool:
    return target in OPERATIONAL_TRANSITIONS.get(source, set())
