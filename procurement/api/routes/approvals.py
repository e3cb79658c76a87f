from typing import Optional

from fastapi import APIRouter, Body, Depends

from procurement.api.deps import Actor, get_actor, get_workflow_engine, to_page
from procurement.api.errors import to_http_error
from procurement.api.schemas import DecisionBody, PageParams, PaginatedResponse, PurchaseRequestOut
from procurement.core.errors import WorkflowError
from procurement.domain.requests.entities import Pagination
from procurement.domain.workflow.engine import WorkflowEngine

router = APIRouter(prefix="/approvals", tags=["Approvals"])


@router.get(
    "",
    summary="Approval queue",
    description="Pending requests, urgent first and then oldest first.",
    response_model=PaginatedResponse[PurchaseRequestOut],
)
async def list_pending_approvals(
    q: PageParams = Depends(),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    try:
        page = await engine.list_pending_approvals(
            caller_role=actor.role,
            paging=Pagination(limit=q.limit, offset=q.offset),
        )
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return to_page(page)


@router.post("/{request_id}/approve", response_model=PurchaseRequestOut)
async def approve_request(
    request_id: int,
    body: Optional[DecisionBody] = Body(default=None),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """
    Approve a pending request.

    Amazon products are sent to the shared cart in the background; the
    response does not wait for the cart.
    """
    try:
        record = await engine.approve(
            request_id=request_id,
            approver_id=actor.user_id,
            approver_role=actor.role,
            comment=body.comment if body else None,
        )
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return PurchaseRequestOut.model_validate(record)


@router.post("/{request_id}/reject", response_model=PurchaseRequestOut)
async def reject_request(
    request_id: int,
    body: DecisionBody,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    try:
        record = await engine.reject(
            request_id=request_id,
            approver_id=actor.user_id,
            approver_role=actor.role,
            comment=body.comment,
        )
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return PurchaseRequestOut.model_validate(record)


@router.post("/{request_id}/request-info", response_model=PurchaseRequestOut)
async def request_more_info(
    request_id: int,
    body: DecisionBody,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    try:
        record = await engine.request_info(
            request_id=request_id,
            approver_id=actor.user_id,
            approver_role=actor.role,
            comment=body.comment,
        )
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return PurchaseRequestOut.model_validate(record)
