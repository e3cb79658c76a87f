from __future__ import annotations

import copy
import threading
from dataclasses import replace
from typing import Any

from procurement.core.errors import InvalidStateError, NotFoundError
from .entities import (
    HistoryEntryEntity,
    PageResult,
    Pagination,
    PurchaseRequestEntity,
    RequestFilters,
    Sorting,
    format_request_number,
)
from .repository import check_columns


class InMemoryPurchaseRequestRepository:
    """Process-local repository with the same version check as the SQL one."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[int, PurchaseRequestEntity] = {}
        self._history: dict[int, list[HistoryEntryEntity]] = {}
        self._next_id = 1
        self._next_history_id = 1

    def create(self, record: PurchaseRequestEntity, history: HistoryEntryEntity) -> PurchaseRequestEntity:
        with self._lock:
            year = record.created_at.year
            sequence = sum(1 for r in self._records.values() if r.created_at.year == year) + 1

            stored = replace(
                copy.deepcopy(record),
                id=self._next_id,
                request_number=format_request_number(year, sequence),
                updated_at=record.created_at,
                version=0,
                history=[],
            )
            self._next_id += 1
            self._records[stored.id] = stored
            self._history[stored.id] = []
            self._append_history(stored.id, history)
            return self._snapshot(stored.id)

    def get(self, request_id: int) -> PurchaseRequestEntity:
        with self._lock:
            return self._snapshot(request_id)

    def apply_transition(
            self,
            *,
            request_id: int,
            expected_version: int,
            changes: dict[str, Any],
            history: HistoryEntryEntity,
    ) -> PurchaseRequestEntity:
        check_columns(changes)
        with self._lock:
            current = self._records.get(request_id)
            if current is None:
                raise NotFoundError(request_id)
            if current.version != expected_version:
                raise InvalidStateError(
                    f"Request {current.request_number} was changed by someone else; "
                    f"it is now '{current.status.value}'"
                )

            self._records[request_id] = replace(
                current,
                **changes,
                version=expected_version + 1,
                updated_at=history.created_at,
            )
            self._append_history(request_id, history)
            return self._snapshot(request_id)

    def list(self, filters: RequestFilters, paging: Pagination, sorting: Sorting) -> PageResult:
        with self._lock:
            matching = [r for r in self._records.values() if filters.matches(r)]

        # Stable sorts applied from the least significant key upwards
        for field_name, direction in reversed(sorting.order_by):
            descending = direction == "desc"
            matching.sort(key=lambda r: _sort_key(getattr(r, field_name), descending), reverse=descending)

        page = matching[paging.offset:paging.offset + paging.limit]
        data = [replace(copy.deepcopy(r), history=[]) for r in page]
        return PageResult.build(data, len(matching), paging)

    def scan(self, filters: RequestFilters) -> list[PurchaseRequestEntity]:
        with self._lock:
            return [
                replace(copy.deepcopy(r), history=[])
                for r in sorted(self._records.values(), key=lambda r: r.id)
                if filters.matches(r)
            ]

    def _append_history(self, request_id: int, history: HistoryEntryEntity) -> None:
        entry = replace(history, id=self._next_history_id, request_id=request_id)
        self._next_history_id += 1
        self._history[request_id].append(entry)

    def _snapshot(self, request_id: int) -> PurchaseRequestEntity:
        record = self._records.get(request_id)
        if record is None:
            raise NotFoundError(request_id)
        return replace(copy.deepcopy(record), history=copy.deepcopy(self._history[request_id]))


def _sort_key(value: Any, descending: bool) -> tuple[bool, Any]:
    # None sorts last in both directions, as NULLS LAST does in SQL
    missing = value is None
    return (not missing if descending else missing, 0 if missing else value)
