"""Dashboard counters derived from request records.

Counts are recomputed from whatever records the caller may see; nothing is
cached or incremented elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from procurement.domain.requests.entities import PurchaseRequestEntity, RequestStatus, Urgency


@dataclass(frozen=True)
class StatsSnapshot:
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    info_requested: int = 0
    purchased: int = 0
    cancelled: int = 0
    total: int = 0
    # urgent requests still waiting for a decision
    urgent: int = 0
    amazon_in_cart: int = 0
    pending_manual: int = 0


def project_stats(records: Iterable[PurchaseRequestEntity]) -> StatsSnapshot:
    by_status = {status: 0 for status in RequestStatus}
    total = urgent = in_cart = manual = 0

    for record in records:
        total += 1
        by_status[record.status] += 1

        if record.status == RequestStatus.PENDING and record.urgency == Urgency.URGENT:
            urgent += 1
        if record.status == RequestStatus.APPROVED:
            if record.added_to_cart:
                in_cart += 1
            else:
                manual += 1

    return StatsSnapshot(
        pending=by_status[RequestStatus.PENDING],
        approved=by_status[RequestStatus.APPROVED],
        rejected=by_status[RequestStatus.REJECTED],
        info_requested=by_status[RequestStatus.INFO_REQUESTED],
        purchased=by_status[RequestStatus.PURCHASED],
        cancelled=by_status[RequestStatus.CANCELLED],
        total=total,
        urgent=urgent,
        amazon_in_cart=in_cart,
        pending_manual=manual,
    )
