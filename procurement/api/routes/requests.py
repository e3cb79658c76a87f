from typing import Optional

from fastapi import APIRouter, Body, Depends

from procurement.api.deps import Actor, get_actor, get_workflow_engine, to_page
from procurement.api.errors import to_http_error
from procurement.api.schemas import (
    DecisionBody,
    MetadataPreviewOut,
    MetadataRequestBody,
    PaginatedResponse,
    PurchaseRequestOut,
    RequestListParams,
    StatsOut,
)
from procurement.core.errors import WorkflowError
from procurement.domain.requests.entities import Pagination, RequestFilters
from procurement.domain.workflow.engine import WorkflowEngine
from procurement.domain.workflow.schemas import RequestDraft, RequestUpdate

router = APIRouter(prefix="/requests", tags=["Requests"])


@router.post(
    "",
    status_code=201,
    summary="Submit a purchase request",
    response_model=PurchaseRequestOut,
)
async def submit_request(
    draft: RequestDraft,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """
    Submit a product link for approval.

    Title, image and price are looked up from the link when left blank.
    """
    try:
        record = await engine.submit_request(
            requester_id=actor.user_id,
            requester_role=actor.role,
            draft=draft,
        )
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return PurchaseRequestOut.model_validate(record)


@router.post(
    "/extract-metadata",
    summary="Preview product details for a link",
    response_model=MetadataPreviewOut,
)
async def extract_metadata(
    body: MetadataRequestBody,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """
    Look up title, image and price before submitting.

    When the page cannot be read the response is still 200, with `error`
    set and the fields known from the link itself filled in.
    """
    try:
        metadata = await engine.preview_metadata(url=body.url)
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return MetadataPreviewOut(url=body.url.strip(), **metadata.model_dump())


@router.get(
    "",
    summary="List purchase requests",
    description="Returns requests visible to the caller, newest first.",
    response_model=PaginatedResponse[PurchaseRequestOut],
)
async def list_requests(
    q: RequestListParams = Depends(),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    filters = RequestFilters(
        statuses=(q.status,) if q.status else None,
        urgency=q.urgency,
    )
    page = await engine.list_requests(
        caller_id=actor.user_id,
        caller_role=actor.role,
        filters=filters,
        paging=Pagination(limit=q.limit, offset=q.offset),
    )
    return to_page(page)


@router.get("/stats", summary="Dashboard counters", response_model=StatsOut)
async def get_stats(
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    snapshot = await engine.get_stats(caller_role=actor.role, caller_id=actor.user_id)
    return StatsOut.model_validate(snapshot)


@router.get("/{request_id}", response_model=PurchaseRequestOut)
async def get_request(
    request_id: int,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Get a request with its full history."""
    try:
        record = await engine.get_request(
            request_id=request_id,
            caller_id=actor.user_id,
            caller_role=actor.role,
        )
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return PurchaseRequestOut.model_validate(record)


@router.post("/{request_id}/resubmit", response_model=PurchaseRequestOut)
async def resubmit_request(
    request_id: int,
    updates: RequestUpdate,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Answer an information request and send the request back for approval."""
    try:
        record = await engine.resubmit(
            request_id=request_id,
            requester_id=actor.user_id,
            updates=updates,
        )
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return PurchaseRequestOut.model_validate(record)


@router.post("/{request_id}/cancel", response_model=PurchaseRequestOut)
async def cancel_request(
    request_id: int,
    body: Optional[DecisionBody] = Body(default=None),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    try:
        record = await engine.cancel(
            request_id=request_id,
            requester_id=actor.user_id,
            comment=body.comment if body else None,
        )
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return PurchaseRequestOut.model_validate(record)
