from __future__ import annotations

import itertools

import pytest

from clearance.domain.state_machine import (
    OperationalStatus,
    OverallStatus,
    ReviewStatus,
    aggregate_overall_status,
    can_operational_transition,
)


def _expected(statuses: tuple[ReviewStatus, ...]) -> OverallStatus:
    if ReviewStatus.REJECTED in statuses:
        return OverallStatus.REJECTED
    if set(statuses) == {ReviewStatus.APPROVED}:
        return OverallStatus.APPROVED
    if set(statuses) == {ReviewStatus.PENDING}:
        return OverallStatus.PENDING
    return OverallStatus.UNDER_REVIEW


@pytest.mark.parametrize("statuses", list(itertools.product(list(ReviewStatus), repeat=3)))
def test_aggregate_covers_every_vote_combination(statuses: tuple[ReviewStatus, ...]) -> None:
    assert aggregate_overall_status(statuses) == _expected(statuses)


def test_aggregate_is_order_independent() -> None:
    for combo in itertools.product(list(ReviewStatus), repeat=3):
        results = {aggregate_overall_status(perm) for perm in itertools.permutations(combo)}
        assert len(results) == 1


def test_aggregate_collapses_partial_approval() -> None:
    one = (ReviewStatus.APPROVED, ReviewStatus.PENDING, ReviewStatus.PENDING)
    two = (ReviewStatus.APPROVED, ReviewStatus.APPROVED, ReviewStatus.PENDING)
    assert aggregate_overall_status(one) == OverallStatus.UNDER_REVIEW
    assert aggregate_overall_status(two) == OverallStatus.UNDER_REVIEW


def test_aggregate_accepts_raw_values() -> None:
    assert aggregate_overall_status(["approved", "approved", "approved"]) == OverallStatus.APPROVED


def test_aggregate_rejects_wrong_arity() -> None:
    with pytest.raises(ValueError):
        aggregate_overall_status([ReviewStatus.APPROVED, ReviewStatus.APPROVED])


def test_operational_transitions() -> None:
    assert can_operational_transition(OperationalStatus.PENDING, OperationalStatus.ACTIVE)
    assert can_operational_transition(OperationalStatus.ACTIVE, OperationalStatus.COMPLETED)
    assert not can_operational_transition(OperationalStatus.PENDING, OperationalStatus.COMPLETED)
    assert not can_operational_transition(OperationalStatus.ACTIVE, OperationalStatus.ACTIVE)
    assert not can_operational_transition(OperationalStatus.COMPLETED, OperationalStatus.ACTIVE)
