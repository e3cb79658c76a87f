import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

from procurement.api.core.container import Container, get_container
from procurement.api.schemas import PaginatedResponse, PaginationMeta, PurchaseRequestOut
from procurement.domain.requests.entities import PageResult
from procurement.domain.requests.roles import Role
from procurement.domain.workflow.engine import WorkflowEngine


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: Role


def get_actor(
    x_user_id: Optional[int] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Actor:
    """Identity of the caller, as forwarded by the authenticating gateway."""
    if x_user_id is None or not x_user_role:
        raise HTTPException(status_code=401, detail="X-User-Id and X-User-Role headers are required")
    try:
        role = Role(x_user_role)
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role '{x_user_role}'")
    return Actor(user_id=x_user_id, role=role)


def get_workflow_engine(container: Container = Depends(get_container)) -> WorkflowEngine:
    return container.workflow_engine


def to_page(page: PageResult) -> PaginatedResponse[PurchaseRequestOut]:
    return PaginatedResponse[PurchaseRequestOut](
        data=[PurchaseRequestOut.model_validate(record) for record in page.data],
        meta=PaginationMeta(
            total=page.meta.total,
            limit=page.meta.limit,
            offset=page.meta.offset,
            has_next=page.meta.has_next,
            has_previous=page.meta.has_previous,
        ),
    )


def require_cart_callback_token(
    x_cart_callback_token: Optional[str] = Header(default=None),
    container: Container = Depends(get_container),
) -> None:
    """Only the cart automation, holding the shared token, may report results."""
    if not x_cart_callback_token:
        raise HTTPException(status_code=401, detail="X-Cart-Callback-Token header is required")
    expected = container.settings.cart_callback_token
    if not expected or not secrets.compare_digest(x_cart_callback_token, expected):
        raise HTTPException(status_code=403, detail="Invalid cart callback token")
