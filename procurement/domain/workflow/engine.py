"""Purchase request workflow: submission -> decision -> purchase.

This is the only place a request changes state. It is responsible for:
- checking the acting role (and ownership, for requester actions)
- checking the current status before every transition
- writing the new status and exactly one history entry as one unit
- handing approved Amazon requests to the cart dispatcher without blocking
- recording the dispatcher's outcome when it arrives

The engine keeps no records of its own; everything lives behind the
injected repository.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable

from procurement.core.errors import AuthorizationError, InvalidStateError, ValidationError
from procurement.domain.requests.amazon import extract_asin, is_amazon_url
from procurement.domain.requests.entities import (
    HistoryAction,
    HistoryEntryEntity,
    OrderFilter,
    PageResult,
    Pagination,
    PurchaseRequestEntity,
    RequestFilters,
    RequestStatus,
    Sorting,
    utcnow,
)
from procurement.domain.requests.repository import PurchaseRequestRepositoryProtocol
from procurement.domain.requests.roles import Capability, Role, assert_capability, has_capability
from procurement.domain.stats.projector import StatsSnapshot, project_stats
from procurement.integrations.cart_dispatcher import CartDispatcher, CartDispatchResult
from procurement.integrations.dispatch_runner import CartDispatchRunner
from procurement.integrations.metadata import MetadataExtractor, ProductMetadata
from procurement.observability.tracing import log_event, new_trace_id, request_fields

from .schemas import MetadataLookup, RequestDraft, RequestUpdate, parse_input

DEFAULT_APPROVAL_COMMENT = "Request approved"
DEFAULT_CANCEL_COMMENT = "Request cancelled by requester"
DEFAULT_PURCHASE_COMMENT = "Marked as purchased"
AUTO_PURCHASE_NOTE = "Added to the Amazon Business cart by automation"


class WorkflowEngine:
    """Validates and applies purchase request transitions."""

    def __init__(
        self,
        *,
        repository: PurchaseRequestRepositoryProtocol,
        cart_dispatcher: CartDispatcher | None = None,
        metadata_extractor: MetadataExtractor | None = None,
        cart_dispatch_timeout_seconds: float = 120.0,
        auto_purchase_on_cart_success: bool = True,
        default_currency: str = "MXN",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repository
        self._metadata = metadata_extractor
        self._auto_purchase = auto_purchase_on_cart_success
        self._default_currency = default_currency
        self._clock = clock
        self._dispatches = (
            CartDispatchRunner(
                dispatcher=cart_dispatcher,
                on_result=self.on_cart_dispatch_result,
                timeout_seconds=cart_dispatch_timeout_seconds,
            )
            if cart_dispatcher is not None
            else None
        )

    # -------------------------
    # Requester actions
    # -------------------------

    async def submit_request(
        self,
        *,
        requester_id: int,
        requester_role: Role | str,
        draft: RequestDraft | dict[str, Any],
    ) -> PurchaseRequestEntity:
        """Create a pending request with its ``created`` history entry.

        Metadata extraction runs only when the requester left the title or
        image blank, and never blocks submission when it fails.
        """
        assert_capability(requester_role, Capability.SUBMIT, action="submit purchase requests")
        draft = parse_input(RequestDraft, draft)
        trace_id = new_trace_id()

        metadata = ProductMetadata()
        if not draft.product_title or not draft.product_image_url:
            metadata = await self._extract_metadata(draft.url, trace_id=trace_id)

        amazon = is_amazon_url(draft.url)
        now = self._clock()
        record = PurchaseRequestEntity(
            requester_id=requester_id,
            url=draft.url,
            quantity=draft.quantity,
            justification=draft.justification,
            urgency=draft.urgency,
            status=RequestStatus.PENDING,
            product_title=draft.product_title or metadata.title,
            product_image_url=draft.product_image_url or metadata.image_url,
            product_description=draft.product_description or metadata.description,
            estimated_price=draft.estimated_price if draft.estimated_price is not None else metadata.price,
            currency=draft.currency or metadata.currency or self._default_currency,
            is_amazon_url=amazon,
            amazon_asin=(extract_asin(draft.url) or metadata.asin) if amazon else None,
            created_at=now,
        )
        history = HistoryEntryEntity(
            request_id=None,
            user_id=requester_id,
            action=HistoryAction.CREATED,
            old_status=None,
            new_status=RequestStatus.PENDING,
            comment="Purchase request created",
            created_at=now,
        )

        created = self._repo.create(record, history)
        log_event(
            "request.submitted",
            trace_id=trace_id,
            **request_fields(created),
            requester_id=requester_id,
            is_amazon_url=created.is_amazon_url,
        )
        return created

    async def resubmit(
        self,
        *,
        request_id: int,
        requester_id: int,
        updates: RequestUpdate | dict[str, Any],
    ) -> PurchaseRequestEntity:
        """Answer an info request: apply the requester's edits and return to pending."""
        updates = parse_input(RequestUpdate, updates)
        record = self._repo.get(request_id)
        self._require_owner(record, requester_id, action="resubmit")
        self._require_status(record, (RequestStatus.INFO_REQUESTED,), action="resubmitted")

        changes = updates.changes_against(record)
        if not changes:
            raise ValidationError("Resubmission must change at least one field")

        return self._commit(
            record,
            actor_id=requester_id,
            action=HistoryAction.RESUBMITTED,
            new_status=RequestStatus.PENDING,
            changes=changes,
            comment="Updated fields: " + ", ".join(sorted(changes)),
        )

    async def cancel(
        self,
        *,
        request_id: int,
        requester_id: int,
        comment: str | None = None,
    ) -> PurchaseRequestEntity:
        record = self._repo.get(request_id)
        self._require_owner(record, requester_id, action="cancel")
        self._require_status(
            record,
            (RequestStatus.PENDING, RequestStatus.INFO_REQUESTED),
            action="cancelled",
        )
        return self._commit(
            record,
            actor_id=requester_id,
            action=HistoryAction.CANCELLED,
            new_status=RequestStatus.CANCELLED,
            changes={},
            comment=_clean(comment) or DEFAULT_CANCEL_COMMENT,
        )

    # -------------------------
    # Approver actions
    # -------------------------

    async def approve(
        self,
        *,
        request_id: int,
        approver_id: int,
        approver_role: Role | str,
        comment: str | None = None,
    ) -> PurchaseRequestEntity:
        """Approve a pending request.

        For Amazon links the cart dispatch is scheduled after the approval is
        committed; the returned record reflects the approval only.
        """
        assert_capability(approver_role, Capability.DECIDE, action="approve requests")
        record = self._repo.get(request_id)
        self._require_status(record, (RequestStatus.PENDING,), action="approved")

        now = self._clock()
        changes: dict[str, Any] = {"approved_by_id": approver_id, "approved_at": now}
        dispatch = record.is_amazon_url and self._dispatches is not None
        if dispatch:
            changes["cart_attempts"] = record.cart_attempts + 1

        approved = self._commit(
            record,
            actor_id=approver_id,
            action=HistoryAction.APPROVED,
            new_status=RequestStatus.APPROVED,
            changes=changes,
            comment=_clean(comment) or DEFAULT_APPROVAL_COMMENT,
            now=now,
        )

        if dispatch:
            self._schedule_dispatch(approved)
        elif record.is_amazon_url:
            log_event(
                "cart.dispatch.skipped",
                trace_id=new_trace_id(),
                request_id=approved.id,
                reason="cart automation is not configured",
            )
        return approved

    async def reject(
        self,
        *,
        request_id: int,
        approver_id: int,
        approver_role: Role | str,
        comment: str,
    ) -> PurchaseRequestEntity:
        reason = _require_comment(comment, "A rejection reason is required")
        assert_capability(approver_role, Capability.DECIDE, action="reject requests")
        record = self._repo.get(request_id)
        self._require_status(record, (RequestStatus.PENDING,), action="rejected")

        now = self._clock()
        return self._commit(
            record,
            actor_id=approver_id,
            action=HistoryAction.REJECTED,
            new_status=RequestStatus.REJECTED,
            changes={"rejected_by_id": approver_id, "rejected_at": now, "rejection_reason": reason},
            comment=reason,
            now=now,
        )

    async def request_info(
        self,
        *,
        request_id: int,
        approver_id: int,
        approver_role: Role | str,
        comment: str,
    ) -> PurchaseRequestEntity:
        note = _require_comment(comment, "Please specify what information is needed")
        assert_capability(approver_role, Capability.DECIDE, action="request more information")
        record = self._repo.get(request_id)
        self._require_status(record, (RequestStatus.PENDING,), action="returned for information")

        now = self._clock()
        return self._commit(
            record,
            actor_id=approver_id,
            action=HistoryAction.RETURNED,
            new_status=RequestStatus.INFO_REQUESTED,
            changes={"info_request_note": note, "info_requested_at": now},
            comment=note,
            now=now,
        )

    # -------------------------
    # Admin actions
    # -------------------------

    async def mark_purchased(
        self,
        *,
        request_id: int,
        admin_id: int,
        admin_role: Role | str,
        notes: str | None = None,
        confirm_manual: bool = False,
    ) -> PurchaseRequestEntity:
        """Record that an approved request was bought.

        An Amazon request that never reached the cart was bought by hand;
        the operator has to say so with ``confirm_manual``.
        """
        assert_capability(admin_role, Capability.MARK_PURCHASED, action="mark requests as purchased")
        record = self._repo.get(request_id)
        self._require_status(record, (RequestStatus.APPROVED,), action="marked as purchased")

        if record.is_amazon_url and not record.added_to_cart and not confirm_manual:
            raise ValidationError(
                f"Request {record.request_number} is not in the Amazon cart; "
                "confirm the manual purchase to continue"
            )

        now = self._clock()
        notes = _clean(notes)
        return self._commit(
            record,
            actor_id=admin_id,
            action=HistoryAction.PURCHASED,
            new_status=RequestStatus.PURCHASED,
            changes={"purchased_by_id": admin_id, "purchased_at": now, "purchase_notes": notes or None},
            comment=notes or DEFAULT_PURCHASE_COMMENT,
            now=now,
        )

    async def retry_cart(
        self,
        *,
        request_id: int,
        admin_id: int,
        admin_role: Role | str,
    ) -> PurchaseRequestEntity:
        """Clear a failed dispatch and send the item to the cart again."""
        assert_capability(admin_role, Capability.RETRY_CART, action="retry cart dispatches")
        record = self._repo.get(request_id)
        if not record.is_amazon_url:
            raise InvalidStateError(f"Request {record.request_number} is not an Amazon product")
        self._require_status(record, (RequestStatus.APPROVED,), action="sent to the cart")
        if record.added_to_cart:
            raise InvalidStateError(f"Request {record.request_number} is already in the Amazon cart")
        if not record.cart_error:
            raise InvalidStateError(f"Request {record.request_number} has no failed cart dispatch to retry")
        if self._dispatches is None:
            raise InvalidStateError("Amazon cart automation is not configured")

        retried = self._commit(
            record,
            actor_id=admin_id,
            action=HistoryAction.CART_RETRIED,
            new_status=RequestStatus.APPROVED,
            changes={"cart_error": None, "cart_attempts": record.cart_attempts + 1},
            comment=f"Retrying cart dispatch after: {record.cart_error}",
        )
        self._schedule_dispatch(retried)
        return retried

    # -------------------------
    # System callbacks
    # -------------------------

    async def on_cart_dispatch_result(
        self,
        *,
        request_id: int,
        result: CartDispatchResult | dict[str, Any],
        trace_id: str | None = None,
    ) -> PurchaseRequestEntity:
        """Record what the cart automation reported.

        Success puts the item in the cart and, when auto purchase is on,
        completes the request. Failure keeps the request approved and stores
        the error for an operator to retry. Each dispatch attempt is answered
        at most once; a result naming an older attempt is refused.
        """
        result = parse_input(CartDispatchResult, result)
        record = self._repo.get(request_id)
        if not record.is_amazon_url:
            raise InvalidStateError(f"Request {record.request_number} is not an Amazon product")
        self._require_status(record, (RequestStatus.APPROVED,), action="updated with a cart result")
        if record.added_to_cart:
            raise InvalidStateError(f"Request {record.request_number} is already in the Amazon cart")
        if result.attempt is not None and result.attempt != record.cart_attempts:
            raise InvalidStateError(
                f"Cart result for attempt {result.attempt} of request {record.request_number} "
                f"is stale; the current attempt is {record.cart_attempts}"
            )
        if record.cart_error:
            raise InvalidStateError(
                f"Request {record.request_number} already has a failed cart dispatch; retry it first"
            )

        now = self._clock()
        if result.success:
            changes: dict[str, Any] = {"added_to_cart": True, "added_to_cart_at": now, "cart_error": None}
            new_status = RequestStatus.APPROVED
            if self._auto_purchase:
                new_status = RequestStatus.PURCHASED
                changes.update(purchased_at=now, purchase_notes=AUTO_PURCHASE_NOTE)
            return self._commit(
                record,
                actor_id=None,
                action=HistoryAction.CART_ADDED,
                new_status=new_status,
                changes=changes,
                comment="Added to Amazon cart",
                now=now,
                trace_id=trace_id,
            )

        error = _clean(result.error) or "Cart dispatch failed"
        return self._commit(
            record,
            actor_id=None,
            action=HistoryAction.CART_FAILED,
            new_status=RequestStatus.APPROVED,
            changes={"cart_error": error},
            comment=error,
            now=now,
            trace_id=trace_id,
        )

    async def drain(self) -> None:
        """Wait for every in-flight cart dispatch to be recorded."""
        if self._dispatches is not None:
            await self._dispatches.drain()

    async def resume_cart_watchdogs(self) -> int:
        """Restart the callback deadline for dispatches accepted before a restart.

        The remaining time is measured from the request's last update, so a
        deadline that already passed records the failure right away.
        """
        if self._dispatches is None:
            return 0
        waiting = [
            record
            for record in self._repo.scan(
                RequestFilters(statuses=(RequestStatus.APPROVED,), is_amazon_url=True, added_to_cart=False)
            )
            if record.cart_attempts > 0 and not record.cart_error
        ]
        now = self._clock()
        for record in waiting:
            elapsed = (now - (record.updated_at or now)).total_seconds()
            self._dispatches.watch(
                request_id=record.id,
                attempt=record.cart_attempts,
                trace_id=new_trace_id(),
                delay=self._dispatches.timeout_seconds - elapsed,
            )
        return len(waiting)

    async def close(self) -> None:
        """Drain dispatch calls and stop waiting for callbacks."""
        if self._dispatches is not None:
            await self._dispatches.close()

    # -------------------------
    # Metadata
    # -------------------------

    async def preview_metadata(self, *, url: str) -> ProductMetadata:
        """Look up a product page before the request is submitted.

        Extraction failures are returned in ``error`` alongside whatever is
        known from the URL itself; they are never raised.
        """
        url = parse_input(MetadataLookup, {"url": url}).url
        trace_id = new_trace_id()
        if self._metadata is None:
            metadata = ProductMetadata(error="Metadata extraction is not configured")
        else:
            try:
                metadata = await self._metadata.extract_metadata(url)
            except Exception as exc:  # noqa: BLE001 - reported in the response
                log_event("metadata.failed", trace_id=trace_id, url=url, error=str(exc))
                metadata = ProductMetadata(error=f"Failed to extract metadata: {exc}")

        amazon = is_amazon_url(url)
        return metadata.model_copy(
            update={
                "currency": metadata.currency or self._default_currency,
                "is_amazon": amazon,
                "asin": (extract_asin(url) or metadata.asin) if amazon else None,
            }
        )

    # -------------------------
    # Reads
    # -------------------------

    async def get_request(self, *, request_id: int, caller_id: int, caller_role: Role | str) -> PurchaseRequestEntity:
        record = self._repo.get(request_id)
        if not has_capability(caller_role, Capability.VIEW_ALL) and not record.is_owned_by(caller_id):
            raise AuthorizationError("Access denied")
        return record

    async def list_requests(
        self,
        *,
        caller_id: int,
        caller_role: Role | str,
        filters: RequestFilters | None = None,
        paging: Pagination | None = None,
    ) -> PageResult:
        """List requests visible to the caller, newest first."""
        filters = self._scoped(filters or RequestFilters(), caller_id=caller_id, caller_role=caller_role)
        return self._repo.list(filters, paging or Pagination(), Sorting.newest_first())

    async def list_pending_approvals(self, *, caller_role: Role | str, paging: Pagination | None = None) -> PageResult:
        assert_capability(caller_role, Capability.DECIDE, action="view the approval queue")
        filters = RequestFilters(statuses=(RequestStatus.PENDING,))
        return self._repo.list(filters, paging or Pagination(), Sorting.approval_queue())

    async def list_orders(
        self,
        *,
        caller_role: Role | str,
        order_filter: OrderFilter = OrderFilter.ALL,
        paging: Pagination | None = None,
    ) -> PageResult:
        assert_capability(caller_role, Capability.VIEW_ORDERS, action="view approved orders")
        filters = RequestFilters.for_orders(OrderFilter(order_filter))
        return self._repo.list(filters, paging or Pagination(), Sorting.latest_approval_first())

    async def get_stats(self, *, caller_role: Role | str, caller_id: int) -> StatsSnapshot:
        """Count the caller-visible requests from a fresh scan."""
        filters = self._scoped(RequestFilters(), caller_id=caller_id, caller_role=caller_role)
        return project_stats(self._repo.scan(filters))

    # ------------------------------
    # Helpers
    # ------------------------------

    def _commit(
        self,
        record: PurchaseRequestEntity,
        *,
        actor_id: int | None,
        action: HistoryAction,
        new_status: RequestStatus,
        changes: dict[str, Any],
        comment: str,
        now: datetime | None = None,
        trace_id: str | None = None,
    ) -> PurchaseRequestEntity:
        now = now or self._clock()
        history = HistoryEntryEntity(
            request_id=record.id,
            user_id=actor_id,
            action=action,
            old_status=record.status,
            new_status=new_status,
            comment=comment,
            created_at=now,
        )
        updated = self._repo.apply_transition(
            request_id=record.id,
            expected_version=record.version,
            changes={**changes, "status": new_status},
            history=history,
        )
        if self._dispatches is not None:
            self._dispatches.settle(record.id)
        log_event(
            "request.transition",
            trace_id=trace_id or new_trace_id(),
            **request_fields(updated),
            action=action.value,
            old_status=record.status.value,
            new_status=new_status.value,
            actor_id=actor_id,
        )
        return updated

    def _schedule_dispatch(self, record: PurchaseRequestEntity) -> None:
        self._dispatches.schedule(
            request_id=record.id,
            asin_or_url=record.asin_or_url,
            quantity=record.quantity,
            attempt=record.cart_attempts,
            trace_id=new_trace_id(),
        )

    async def _extract_metadata(self, url: str, *, trace_id: str) -> ProductMetadata:
        if self._metadata is None:
            return ProductMetadata()
        try:
            metadata = await self._metadata.extract_metadata(url)
        except Exception as exc:  # noqa: BLE001 - extraction never blocks submission
            log_event("metadata.failed", trace_id=trace_id, url=url, error=str(exc))
            return ProductMetadata()

        if metadata.error:
            log_event("metadata.failed", trace_id=trace_id, url=url, error=metadata.error)
            return ProductMetadata()
        return metadata

    @staticmethod
    def _scoped(filters: RequestFilters, *, caller_id: int, caller_role: Role | str) -> RequestFilters:
        if has_capability(caller_role, Capability.VIEW_ALL):
            return filters
        return RequestFilters(
            requester_id=caller_id,
            statuses=filters.statuses,
            urgency=filters.urgency,
            is_amazon_url=filters.is_amazon_url,
            added_to_cart=filters.added_to_cart,
        )

    @staticmethod
    def _require_owner(record: PurchaseRequestEntity, user_id: int, *, action: str) -> None:
        if not record.is_owned_by(user_id):
            raise AuthorizationError(f"Only the requester may {action} request {record.request_number}")

    @staticmethod
    def _require_status(
        record: PurchaseRequestEntity,
        allowed: Iterable[RequestStatus],
        *,
        action: str,
    ) -> None:
        allowed = tuple(allowed)
        if record.status in allowed:
            return
        log_event(
            "request.transition.rejected",
            trace_id=new_trace_id(),
            **request_fields(record),
            attempted=action,
        )
        raise InvalidStateError(
            f"Request {record.request_number} cannot be {action}: it is '{record.status.value}'"
        )


def _clean(text: str | None) -> str:
    return (text or "").strip()


def _require_comment(comment: str | None, message: str) -> str:
    cleaned = _clean(comment)
    if not cleaned:
        raise ValidationError(message)
    return cleaned
