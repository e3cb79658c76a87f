# ============================================================
# DB access layer
# ============================================================
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from procurement.core.errors import InvalidStateError, NotFoundError, WorkflowError
from .entities import (
    HistoryAction,
    HistoryEntryEntity,
    PageResult,
    Pagination,
    PurchaseRequestEntity,
    RequestFilters,
    RequestStatus,
    Sorting,
    Urgency,
    format_request_number,
)
from .models import PurchaseRequest, RequestHistory

# Columns a transition may write. Identity, ownership and the submission
# snapshot of the URL never change after creation.
MUTABLE_COLUMNS = frozenset({
    "status",
    "quantity",
    "justification",
    "urgency",
    "product_title",
    "product_description",
    "estimated_price",
    "added_to_cart",
    "added_to_cart_at",
    "cart_error",
    "cart_attempts",
    "approved_by_id",
    "approved_at",
    "rejected_by_id",
    "rejected_at",
    "rejection_reason",
    "info_request_note",
    "info_requested_at",
    "purchased_by_id",
    "purchased_at",
    "purchase_notes",
})

_ENTITY_COLUMNS = (
    "id", "request_number", "url", "product_title", "product_image_url",
    "product_description", "estimated_price", "currency", "quantity",
    "justification", "requester_id", "is_amazon_url", "amazon_asin",
    "added_to_cart", "added_to_cart_at", "cart_error", "cart_attempts",
    "approved_by_id", "approved_at", "rejected_by_id", "rejected_at",
    "rejection_reason", "info_request_note", "info_requested_at",
    "purchased_by_id", "purchased_at", "purchase_notes", "created_at",
    "updated_at", "version",
)

_MAX_NUMBER_ATTEMPTS = 5


class PurchaseRequestRepositoryProtocol(Protocol):
    def create(self, record: PurchaseRequestEntity, history: HistoryEntryEntity) -> PurchaseRequestEntity:
        """Persist a new request together with its first history entry"""
        ...

    def get(self, request_id: int) -> PurchaseRequestEntity:
        """Get a request and its history, or raise NotFoundError"""
        ...

    def apply_transition(
            self,
            *,
            request_id: int,
            expected_version: int,
            changes: dict[str, Any],
            history: HistoryEntryEntity,
    ) -> PurchaseRequestEntity:
        """Write ``changes`` and append ``history`` if the stored version still matches"""
        ...

    def list(self, filters: RequestFilters, paging: Pagination, sorting: Sorting) -> PageResult:
        """Get one page of requests matching the filters"""
        ...

    def scan(self, filters: RequestFilters) -> list[PurchaseRequestEntity]:
        """Get every request matching the filters, without history"""
        ...


def check_columns(changes: dict[str, Any]) -> None:
    unknown = set(changes) - MUTABLE_COLUMNS
    if unknown:
        raise ValueError(f"Columns cannot be changed by a transition: {sorted(unknown)}")


class SqlAlchemyPurchaseRequestRepository(PurchaseRequestRepositoryProtocol):
    """Repository over SQLAlchemy.

    Every call opens its own short-lived session, so one instance can be
    shared by request handlers and background cart dispatch tasks.
    """

    # Allowed sort columns at persistence layer
    _SORT_COLUMNS = {
        "created_at": PurchaseRequest.created_at,
        "approved_at": PurchaseRequest.approved_at,
        "urgency": PurchaseRequest.urgency,
        "id": PurchaseRequest.id,
    }

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, record: PurchaseRequestEntity, history: HistoryEntryEntity) -> PurchaseRequestEntity:
        """Persist a new request, numbering it ``REQ-<year>-<sequence>``.

        The sequence is the count of requests already created that year plus
        one. Two writers racing for the same number collide on the unique
        index; the loser recounts and tries again.
        """
        year = record.created_at.year

        for _ in range(_MAX_NUMBER_ATTEMPTS):
            with self._session_factory() as db:
                sequence = self._count_created_in_year(db, year) + 1
                row = PurchaseRequest(
                    request_number=format_request_number(year, sequence),
                    url=record.url,
                    product_title=record.product_title,
                    product_image_url=record.product_image_url,
                    product_description=record.product_description,
                    estimated_price=record.estimated_price,
                    currency=record.currency,
                    quantity=record.quantity,
                    justification=record.justification,
                    urgency=_value(record.urgency),
                    requester_id=record.requester_id,
                    status=_value(record.status),
                    is_amazon_url=record.is_amazon_url,
                    amazon_asin=record.amazon_asin,
                    created_at=record.created_at,
                    updated_at=record.created_at,
                    version=0,
                )
                try:
                    db.add(row)
                    db.flush()
                    db.add(self._history_row(row.id, history))
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    continue

                return self._load(db, row.id)

        raise WorkflowError(f"Could not allocate a request number for {year}")

    def get(self, request_id: int) -> PurchaseRequestEntity:
        with self._session_factory() as db:
            return self._load(db, request_id)

    def apply_transition(
            self,
            *,
            request_id: int,
            expected_version: int,
            changes: dict[str, Any],
            history: HistoryEntryEntity,
    ) -> PurchaseRequestEntity:
        check_columns(changes)
        values = {column: _value(value) for column, value in changes.items()}
        values["version"] = expected_version + 1
        values["updated_at"] = history.created_at

        with self._session_factory() as db:
            result = db.execute(
                update(PurchaseRequest)
                .where(
                    PurchaseRequest.id == request_id,
                    PurchaseRequest.version == expected_version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                db.rollback()
                current = db.get(PurchaseRequest, request_id)
                if current is None:
                    raise NotFoundError(request_id)
                raise InvalidStateError(
                    f"Request {current.request_number} was changed by someone else; "
                    f"it is now '{current.status}'"
                )

            db.add(self._history_row(request_id, history))
            db.commit()
            return self._load(db, request_id)

    def list(self, filters: RequestFilters, paging: Pagination, sorting: Sorting) -> PageResult:
        """
        Retrieve one page of requests matching the given filters.

        All filters are optional.
        Pagination is always applied.
        """
        with self._session_factory() as db:
            query = self._filtered(db, filters)
            total = query.count()

            order_clause = []
            for field_name, direction in sorting.order_by:
                column = self._SORT_COLUMNS.get(field_name, PurchaseRequest.created_at)
                order = column.asc() if direction == "asc" else column.desc()
                order_clause.append(order.nulls_last())

            rows = (
                query.order_by(*order_clause)
                .offset(paging.offset)
                .limit(paging.limit)
                .all()
            )
            records = [_to_entity(row, with_history=False) for row in rows]

        return PageResult.build(records, total, paging)

    def scan(self, filters: RequestFilters) -> list[PurchaseRequestEntity]:
        with self._session_factory() as db:
            rows = self._filtered(db, filters).order_by(PurchaseRequest.id).all()
            return [_to_entity(row, with_history=False) for row in rows]

    # ------------------------------
    # Helpers
    # ------------------------------

    @staticmethod
    def _filtered(db: Session, filters: RequestFilters):
        query = db.query(PurchaseRequest)

        if filters.requester_id is not None:
            query = query.filter(PurchaseRequest.requester_id == filters.requester_id)

        if filters.statuses is not None:
            query = query.filter(PurchaseRequest.status.in_([s.value for s in filters.statuses]))

        if filters.urgency is not None:
            query = query.filter(PurchaseRequest.urgency == filters.urgency.value)

        if filters.is_amazon_url is not None:
            query = query.filter(PurchaseRequest.is_amazon_url == filters.is_amazon_url)

        if filters.added_to_cart is not None:
            query = query.filter(PurchaseRequest.added_to_cart == filters.added_to_cart)

        return query

    @staticmethod
    def _count_created_in_year(db: Session, year: int) -> int:
        return int(
            db.query(func.count(PurchaseRequest.id))
            .filter(
                PurchaseRequest.created_at >= datetime(year, 1, 1),
                PurchaseRequest.created_at < datetime(year + 1, 1, 1),
            )
            .scalar()
        )

    @staticmethod
    def _history_row(request_id: int, history: HistoryEntryEntity) -> RequestHistory:
        return RequestHistory(
            request_id=request_id,
            user_id=history.user_id,
            action=_value(history.action),
            comment=history.comment or "",
            old_status=_value(history.old_status),
            new_status=_value(history.new_status),
            created_at=history.created_at,
        )

    @staticmethod
    def _load(db: Session, request_id: int) -> PurchaseRequestEntity:
        row = db.get(PurchaseRequest, request_id, populate_existing=True)
        if row is None:
            raise NotFoundError(request_id)
        return _to_entity(row, with_history=True)


def _value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _to_entity(row: PurchaseRequest, *, with_history: bool) -> PurchaseRequestEntity:
    record = PurchaseRequestEntity(
        **{column: getattr(row, column) for column in _ENTITY_COLUMNS},
        urgency=Urgency(row.urgency),
        status=RequestStatus(row.status),
    )
    if with_history:
        record.history = sorted(
            (_to_history_entity(h) for h in row.history),
            key=lambda h: (h.created_at, h.id),
        )
    return record


def _to_history_entity(row: RequestHistory) -> HistoryEntryEntity:
    return HistoryEntryEntity(
        id=row.id,
        request_id=row.request_id,
        user_id=row.user_id,
        action=HistoryAction(row.action),
        comment=row.comment,
        old_status=RequestStatus(row.old_status) if row.old_status else None,
        new_status=RequestStatus(row.new_status),
        created_at=row.created_at,
    )
