from fastapi import APIRouter, Depends

from procurement.api.deps import get_workflow_engine, require_cart_callback_token
from procurement.api.errors import to_http_error
from procurement.api.schemas import PurchaseRequestOut
from procurement.core.errors import WorkflowError
from procurement.domain.workflow.engine import WorkflowEngine
from procurement.integrations.cart_dispatcher import CartDispatchResult
from procurement.observability.tracing import new_trace_id

router = APIRouter(
    prefix="/callbacks",
    tags=["Callbacks"],
    dependencies=[Depends(require_cart_callback_token)],
)


@router.post("/cart-dispatch/{request_id}", response_model=PurchaseRequestOut)
async def cart_dispatch_result(
    request_id: int,
    result: CartDispatchResult,
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """
    Outcome of a cart job the automation accepted earlier.

    The result names the dispatch attempt it answers. Results for an older
    attempt, late results and duplicates are answered with 409 and change
    nothing.
    """
    try:
        record = await engine.on_cart_dispatch_result(
            request_id=request_id,
            result=result,
            trace_id=new_trace_id(),
        )
    except WorkflowError as exc:
        raise to_http_error(exc) from exc
    return PurchaseRequestOut.model_validate(record)
