from __future__ import annotations

from procurement.domain.requests.entities import PurchaseRequestEntity, RequestStatus, Urgency
from procurement.domain.stats import StatsSnapshot, project_stats


def make_record(status: RequestStatus, *, urgency: Urgency = Urgency.NORMAL, added_to_cart: bool = False):
    return PurchaseRequestEntity(
        requester_id=10,
        url="https://shop.example.com/item",
        quantity=1,
        justification="needed",
        urgency=urgency,
        status=status,
        added_to_cart=added_to_cart,
    )


def test_empty_input_gives_zero_counts() -> None:
    assert project_stats([]) == StatsSnapshot()


def test_counts_follow_each_predicate() -> None:
    # Arrange
    records = [
        make_record(RequestStatus.PENDING),
        make_record(RequestStatus.PENDING, urgency=Urgency.URGENT),
        # Urgent but already decided, so not counted as urgent
        make_record(RequestStatus.REJECTED, urgency=Urgency.URGENT),
        make_record(RequestStatus.APPROVED, added_to_cart=True),
        make_record(RequestStatus.APPROVED),
        make_record(RequestStatus.APPROVED),
        make_record(RequestStatus.INFO_REQUESTED),
        make_record(RequestStatus.PURCHASED, added_to_cart=True),
        make_record(RequestStatus.CANCELLED),
    ]

    # Act
    stats = project_stats(records)

    # Assert
    assert stats == StatsSnapshot(
        pending=2,
        approved=3,
        rejected=1,
        info_requested=1,
        purchased=1,
        cancelled=1,
        total=9,
        urgent=1,
        amazon_in_cart=1,
        pending_manual=2,
    )


def test_projection_is_deterministic() -> None:
    records = [make_record(RequestStatus.PENDING), make_record(RequestStatus.APPROVED)]

    assert project_stats(records) == project_stats(iter(records))
