# ============================================================
# Business/domain entities
# ============================================================
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

SortOrderLiteral = Literal["asc", "desc"]
RequestSortFieldLiteral = Literal["created_at", "approved_at", "urgency", "id"]

REQUEST_NUMBER_PREFIX = "REQ"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    INFO_REQUESTED = "info_requested"
    PURCHASED = "purchased"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    RequestStatus.REJECTED,
    RequestStatus.PURCHASED,
    RequestStatus.CANCELLED,
})


class Urgency(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"


class HistoryAction(str, Enum):
    """Actions written to the request history.

    Besides the decision and cart actions, the log also records
    resubmissions, cancellations and operator cart retries
    (``resubmitted``, ``cancelled``, ``cart_retried``) so that every
    status change has exactly one entry.
    """

    CREATED = "created"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETURNED = "returned"
    RESUBMITTED = "resubmitted"
    CANCELLED = "cancelled"
    PURCHASED = "purchased"
    CART_ADDED = "cart_added"
    CART_FAILED = "cart_failed"
    CART_RETRIED = "cart_retried"


class OrderFilter(str, Enum):
    ALL = "all"
    AMAZON_CART = "amazon_cart"
    PENDING_MANUAL = "pending_manual"
    PURCHASED = "purchased"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every store persists."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_request_number(year: int, sequence: int) -> str:
    return f"{REQUEST_NUMBER_PREFIX}-{year}-{sequence:04d}"


@dataclass
class HistoryEntryEntity:
    request_id: int | None
    user_id: int | None
    action: HistoryAction
    new_status: RequestStatus
    old_status: RequestStatus | None = None
    comment: str = ""
    created_at: datetime | None = None
    id: int | None = None


@dataclass
class PurchaseRequestEntity:
    requester_id: int
    url: str
    quantity: int
    justification: str
    urgency: Urgency = Urgency.NORMAL
    status: RequestStatus = RequestStatus.PENDING

    id: int | None = None
    request_number: str | None = None

    # Snapshot taken at submission time
    product_title: str = ""
    product_image_url: str = ""
    product_description: str = ""
    estimated_price: float | None = None
    currency: str = "MXN"

    # Amazon automation
    is_amazon_url: bool = False
    amazon_asin: str | None = None
    added_to_cart: bool = False
    added_to_cart_at: datetime | None = None
    cart_error: str | None = None
    cart_attempts: int = 0

    # Decisions
    approved_by_id: int | None = None
    approved_at: datetime | None = None
    rejected_by_id: int | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    info_request_note: str | None = None
    info_requested_at: datetime | None = None

    # Purchase completion
    purchased_by_id: int | None = None
    purchased_at: datetime | None = None
    purchase_notes: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 0

    history: list[HistoryEntryEntity] = field(default_factory=list)

    def is_owned_by(self, user_id: int) -> bool:
        return self.requester_id == user_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def asin_or_url(self) -> str:
        return self.amazon_asin or self.url


@dataclass(frozen=True)
class RequestFilters:
    requester_id: Optional[int] = None
    statuses: Optional[tuple[RequestStatus, ...]] = None
    urgency: Optional[Urgency] = None
    is_amazon_url: Optional[bool] = None
    added_to_cart: Optional[bool] = None

    @classmethod
    def for_orders(cls, order_filter: OrderFilter) -> "RequestFilters":
        if order_filter == OrderFilter.AMAZON_CART:
            return cls(statuses=(RequestStatus.APPROVED,), is_amazon_url=True, added_to_cart=True)
        if order_filter == OrderFilter.PENDING_MANUAL:
            return cls(statuses=(RequestStatus.APPROVED,), added_to_cart=False)
        if order_filter == OrderFilter.PURCHASED:
            return cls(statuses=(RequestStatus.PURCHASED,))
        return cls(statuses=(RequestStatus.APPROVED, RequestStatus.PURCHASED))

    def matches(self, record: PurchaseRequestEntity) -> bool:
        if self.requester_id is not None and record.requester_id != self.requester_id:
            return False
        if self.statuses is not None and record.status not in self.statuses:
            return False
        if self.urgency is not None and record.urgency != self.urgency:
            return False
        if self.is_amazon_url is not None and record.is_amazon_url != self.is_amazon_url:
            return False
        if self.added_to_cart is not None and record.added_to_cart != self.added_to_cart:
            return False
        return True


@dataclass(frozen=True)
class Pagination:
    limit: int = 20
    offset: int = 0


@dataclass(frozen=True)
class Sorting:
    order_by: tuple[tuple[RequestSortFieldLiteral, SortOrderLiteral], ...] = (("created_at", "desc"),)

    @classmethod
    def newest_first(cls) -> "Sorting":
        return cls(order_by=(("created_at", "desc"), ("id", "desc")))

    @classmethod
    def approval_queue(cls) -> "Sorting":
        # urgent sorts after normal alphabetically, so descending puts it first
        return cls(order_by=(("urgency", "desc"), ("created_at", "asc"), ("id", "asc")))

    @classmethod
    def latest_approval_first(cls) -> "Sorting":
        return cls(order_by=(("approved_at", "desc"), ("id", "desc")))


@dataclass(frozen=True)
class PageMeta:
    total: int
    limit: int
    offset: int
    has_next: bool
    has_previous: bool


@dataclass(frozen=True)
class PageResult:
    data: list[PurchaseRequestEntity]
    meta: PageMeta

    @classmethod
    def build(cls, data: list[PurchaseRequestEntity], total: int, paging: Pagination) -> "PageResult":
        return cls(
            data=data,
            meta=PageMeta(
                total=total,
                limit=paging.limit,
                offset=paging.offset,
                has_next=(paging.offset + paging.limit) < total,
                has_previous=paging.offset > 0,
            ),
        )
