# --------------------------------
# DI container
# --------------------------------
from functools import lru_cache
from typing import Optional

from procurement.config import Settings, settings as default_settings
from procurement.db.connection import make_session_factory
from procurement.domain.requests.repository import (
    PurchaseRequestRepositoryProtocol,
    SqlAlchemyPurchaseRequestRepository,
)
from procurement.domain.workflow.engine import WorkflowEngine
from procurement.integrations.cart_dispatcher import CartDispatcher, HttpCartDispatcher
from procurement.integrations.metadata import HttpMetadataExtractor, MetadataExtractor


class Container:
    def __init__(
        self,
        settings: Settings = default_settings,
        *,
        repository: Optional[PurchaseRequestRepositoryProtocol] = None,
        cart_dispatcher: Optional[CartDispatcher] = None,
        metadata_extractor: Optional[MetadataExtractor] = None,
    ):
        self._settings = settings
        self._repository = repository or SqlAlchemyPurchaseRequestRepository(
            make_session_factory(settings.database_url)
        )

        # An empty service URL turns the integration off
        if cart_dispatcher is None and settings.cart_dispatch_base_url:
            cart_dispatcher = HttpCartDispatcher(
                settings.cart_dispatch_base_url,
                timeout=settings.cart_dispatch_timeout_seconds,
            )
        if metadata_extractor is None and settings.metadata_service_url:
            metadata_extractor = HttpMetadataExtractor(
                settings.metadata_service_url,
                timeout=settings.metadata_timeout_seconds,
            )

        self._workflow_engine = WorkflowEngine(
            repository=self._repository,
            cart_dispatcher=cart_dispatcher,
            metadata_extractor=metadata_extractor,
            cart_dispatch_timeout_seconds=settings.cart_dispatch_timeout_seconds,
            auto_purchase_on_cart_success=settings.auto_purchase_on_cart_success,
            default_currency=settings.default_currency,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def repository(self) -> PurchaseRequestRepositoryProtocol:
        return self._repository

    @property
    def workflow_engine(self) -> WorkflowEngine:
        return self._workflow_engine


@lru_cache
def get_container():
    return Container()
