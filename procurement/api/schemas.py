from typing import Optional, Generic, List, TypeVar
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from procurement.domain.requests.entities import (
    HistoryAction,
    OrderFilter,
    RequestStatus,
    Urgency,
)


class RequestListParams(BaseModel):
    """
    Query filters for listing purchase requests.

    Employees only ever see their own requests, whatever the filters say.
    """

    status: Optional[RequestStatus] = Field(
        default=None,
        description="Filter requests by status"
    )

    urgency: Optional[Urgency] = Field(
        default=None,
        description="Filter requests by urgency"
    )

    # Pagination
    limit: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Maximum number of records to return (1-100)"
    )

    offset: int = Field(
        default=0,
        ge=0,
        description="Number of records to skip (pagination)"
    )


class PageParams(BaseModel):
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class OrderListParams(PageParams):
    filter: OrderFilter = Field(
        default=OrderFilter.ALL,
        description="all, amazon_cart, pending_manual or purchased"
    )


class DecisionBody(BaseModel):
    comment: Optional[str] = Field(
        default=None,
        description="Required when rejecting or asking for more information"
    )


class MarkPurchasedBody(BaseModel):
    notes: Optional[str] = None
    confirm_manual: bool = Field(
        default=False,
        description="Confirm that an Amazon item missing from the cart was bought by hand"
    )


class HistoryEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int]
    action: HistoryAction
    comment: str
    old_status: Optional[RequestStatus]
    new_status: RequestStatus
    created_at: datetime


class PurchaseRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    request_number: str
    requester_id: int
    status: RequestStatus
    urgency: Urgency

    url: str
    quantity: int
    justification: str
    product_title: str
    product_image_url: str
    product_description: str
    estimated_price: Optional[float]
    currency: str

    is_amazon_url: bool
    amazon_asin: Optional[str]
    added_to_cart: bool
    added_to_cart_at: Optional[datetime]
    cart_error: Optional[str]
    cart_attempts: int

    approved_by_id: Optional[int]
    approved_at: Optional[datetime]
    rejected_by_id: Optional[int]
    rejected_at: Optional[datetime]
    rejection_reason: Optional[str]
    info_request_note: Optional[str]
    info_requested_at: Optional[datetime]

    purchased_by_id: Optional[int]
    purchased_at: Optional[datetime]
    purchase_notes: Optional[str]

    created_at: datetime
    updated_at: datetime

    history: List[HistoryEntryOut] = Field(default_factory=list)


class StatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pending: int
    approved: int
    rejected: int
    info_requested: int
    purchased: int
    cancelled: int
    total: int
    urgent: int
    amazon_in_cart: int
    pending_manual: int


class MetadataRequestBody(BaseModel):
    url: str


class MetadataPreviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    url: str
    title: str = ""
    description: str = ""
    image_url: str = ""
    price: Optional[float] = None
    currency: Optional[str] = None
    is_amazon: bool = False
    asin: Optional[str] = None
    error: Optional[str] = Field(default=None, description="Set when the page could not be read; other fields are partial")


T = TypeVar("T")

class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int
    has_next: bool
    has_previous: bool

class PaginatedResponse(BaseModel, Generic[T]):
    data: List[T]
    meta: PaginationMeta
