"""Purchase request records, their audit history and storage."""
from .entities import (
    HistoryAction,
    HistoryEntryEntity,
    OrderFilter,
    PageMeta,
    PageResult,
    Pagination,
    PurchaseRequestEntity,
    RequestFilters,
    RequestStatus,
    Sorting,
    Urgency,
)
from .roles import Capability, Role, assert_capability, coerce_role, has_capability
from .repository import PurchaseRequestRepositoryProtocol, SqlAlchemyPurchaseRequestRepository
from .in_memory_repository import InMemoryPurchaseRequestRepository
