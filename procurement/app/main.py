"""FastAPI purchase request service.

Employees submit product links, managers decide on them, and the supply
chain team tracks what still has to be bought. Approved Amazon products are
handed to the cart automation service in the background.

Important:
- Callers are authenticated upstream; the gateway forwards the user's id
  and role as X-User-Id / X-User-Role headers
- Every state change is written together with its history entry
- The cart automation reports results with the shared X-Cart-Callback-Token
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from procurement.api.core.container import get_container
from procurement.api.routes import register_routes

tags_metadata = [
    {
        "name": "Requests",
        "description": "Submit, follow, resubmit and cancel purchase requests"
    },
    {
        "name": "Approvals",
        "description": "Approval queue and approve / reject / request-info decisions"
    },
    {
        "name": "Orders",
        "description": "Approved orders, manual purchases and cart retries"
    },
    {
        "name": "Callbacks",
        "description": "Results reported by the Amazon cart automation"
    }
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Resume callback deadlines on start; finish in-flight cart dispatches on stop
    container = app.dependency_overrides.get(get_container, get_container)()
    engine = container.workflow_engine
    await engine.resume_cart_watchdogs()
    yield
    await engine.close()


app = FastAPI(
    title='Purchase Request Workflow',
    version='1.0.0',
    description='Purchase request approval and Amazon cart automation',
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

# Register all API routes
register_routes(app)
