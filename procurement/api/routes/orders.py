from typing import Optional

from fastapi import APIRouter, Body, Depends

from procurement.api.deps import Actor, get_actor, get_workflow_engine, to_page
from procurement.api.errors import to_http_error
from procurement.api.schemas import MarkPurchasedBody, OrderListParams, PaginatedResponse, PurchaseRequestOut
from procurement.core.errors import WorkflowError
from procurement.domain.requests.entities import Pagination
from procurement.domain.workflow.engine import WorkflowEngine

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.get(
    "",
    summary="Approved orders",
    description="Approved and purchased requests, most recently approved first.",
    response_model=PaginatedResponse[PurchaseRequestOut],
)
async def list_orders(
    q: OrderListParams = Depends(),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    try:
        page = await engine.list_orders(
            caller_role=actor.role,
            order_filter=q.filter,
            paging=Pagination(limit=q.limit, offset=q.offset),
        )
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return to_page(page)


@router.post("/{request_id}/mark-purchased", response_model=PurchaseRequestOut)
async def mark_purchased(
    request_id: int,
    body: Optional[MarkPurchasedBody] = Body(default=None),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    body = body or MarkPurchasedBody()
    try:
        record = await engine.mark_purchased(
            request_id=request_id,
            admin_id=actor.user_id,
            admin_role=actor.role,
            notes=body.notes,
            confirm_manual=body.confirm_manual,
        )
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return PurchaseRequestOut.model_validate(record)


@router.post("/{request_id}/retry-cart", response_model=PurchaseRequestOut)
async def retry_cart(
    request_id: int,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Send an Amazon item whose cart dispatch failed to the cart again."""
    try:
        record = await engine.retry_cart(
            request_id=request_id,
            admin_id=actor.user_id,
            admin_role=actor.role,
        )
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return PurchaseRequestOut.model_validate(record)
