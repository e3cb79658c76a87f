from fastapi import FastAPI

from .approvals import router as approvals_router
from .callbacks import router as callbacks_router
from .orders import router as orders_router
from .requests import router as requests_router

def register_routes(app: FastAPI):
    app.include_router(requests_router, prefix="/v1")
    app.include_router(approvals_router, prefix="/v1")
    app.include_router(orders_router, prefix="/v1")
    app.include_router(callbacks_router, prefix="/v1")
