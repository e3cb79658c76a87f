from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from procurement.core.errors import DispatchError, WorkflowError
from procurement.observability.tracing import log_event, traced

from .cart_dispatcher import CartDispatcher, CartDispatchResult

ResultHandler = Callable[..., Awaitable[Any]]


class CartDispatchRunner:
    """
    Runs cart dispatches in the background.

    Responsibilities:
    - Start each dispatch as its own asyncio task so callers never wait on it
    - Bound every dispatch by a timeout, including jobs the automation
      accepted for later: if their callback does not arrive in time a
      failure is recorded
    - Turn timeouts and dispatcher exceptions into failed results
    - Tag every result with the dispatch attempt it answers
    - Hand every result to the workflow for recording

    Non-responsibilities:
    - Retries (operators retry explicitly)
    - Deciding whether a request should be dispatched
    """

    def __init__(
        self,
        *,
        dispatcher: CartDispatcher,
        on_result: ResultHandler,
        timeout_seconds: float,
    ) -> None:
        self._dispatcher = dispatcher
        self._on_result = on_result
        self._timeout = timeout_seconds
        self._tasks: set[asyncio.Task] = set()
        self._watchdogs: dict[int, asyncio.Task] = {}

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def awaiting_callback(self) -> int:
        return len(self._watchdogs)

    def schedule(
        self,
        *,
        request_id: int,
        asin_or_url: str,
        quantity: int,
        attempt: int,
        trace_id: str,
    ) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(
            self._run(
                request_id=request_id,
                asin_or_url=asin_or_url,
                quantity=quantity,
                attempt=attempt,
                trace_id=trace_id,
            )
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def watch(self, *, request_id: int, attempt: int, trace_id: str, delay: float | None = None) -> asyncio.Task:
        """Record a failure for ``attempt`` unless its result is settled within ``delay`` seconds."""
        self.settle(request_id)
        delay = self._timeout if delay is None else max(delay, 0.0)
        task = asyncio.get_running_loop().create_task(
            self._expire(request_id=request_id, attempt=attempt, delay=delay, trace_id=trace_id)
        )
        self._watchdogs[request_id] = task
        task.add_done_callback(lambda t: self._forget_watchdog(request_id, t))
        return task

    def settle(self, request_id: int) -> None:
        """Stop waiting for a callback; the request's dispatch outcome is known."""
        task = self._watchdogs.pop(request_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def drain(self) -> None:
        """Wait until every dispatch call has returned and its result has been recorded.

        Jobs accepted for a later callback are not waited for; see ``close``.
        """
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Drain dispatch calls, then stop the callback watchdogs.

        Requests still waiting for a callback keep their state and are
        picked up again by the workflow on the next start.
        """
        await self.drain()
        watchdogs = list(self._watchdogs.values())
        self._watchdogs.clear()
        for task in watchdogs:
            task.cancel()
        await asyncio.gather(*watchdogs, return_exceptions=True)

    async def _run(
        self,
        *,
        request_id: int,
        asin_or_url: str,
        quantity: int,
        attempt: int,
        trace_id: str,
    ) -> Any:
        log_event('cart.dispatch.start', trace_id=trace_id, request_id=request_id, quantity=quantity, attempt=attempt)

        with traced('cart.dispatch', trace_id=trace_id, request_id=request_id, attempt=attempt) as span:
            try:
                result = await self._dispatch(
                    request_id=request_id,
                    asin_or_url=asin_or_url,
                    quantity=quantity,
                    attempt=attempt,
                )
            except DispatchError as exc:
                span.attributes['dispatch_error'] = str(exc)
                result = CartDispatchResult(success=False, error=str(exc))

        if result is None:
            log_event('cart.dispatch.accepted', trace_id=trace_id, request_id=request_id, attempt=attempt)
            self.watch(request_id=request_id, attempt=attempt, trace_id=trace_id)
            return None

        if result.attempt is None:
            result = result.model_copy(update={'attempt': attempt})
        return await self._record(request_id=request_id, result=result, trace_id=trace_id)

    async def _expire(self, *, request_id: int, attempt: int, delay: float, trace_id: str) -> Any:
        await asyncio.sleep(delay)
        result = CartDispatchResult(
            success=False,
            error=f'Timed out waiting for cart callback after {self._timeout:g}s',
            attempt=attempt,
        )
        return await self._record(request_id=request_id, result=result, trace_id=trace_id)

    async def _record(self, *, request_id: int, result: CartDispatchResult, trace_id: str) -> Any:
        log_event(
            'cart.dispatch.result',
            trace_id=trace_id,
            request_id=request_id,
            attempt=result.attempt,
            success=result.success,
            error=result.error,
        )
        try:
            return await self._on_result(request_id=request_id, result=result, trace_id=trace_id)
        except WorkflowError as exc:
            # The request moved on while the dispatch was running
            log_event('cart.dispatch.dropped', trace_id=trace_id, request_id=request_id, reason=str(exc))
        except Exception as exc:  # noqa: BLE001 - boundary wrapper, nothing awaits this task
            log_event(
                'cart.dispatch.dropped',
                trace_id=trace_id,
                request_id=request_id,
                reason='recording failed',
                error=f'{type(exc).__name__}: {exc}',
            )
        return None

    async def _dispatch(
        self,
        *,
        request_id: int,
        asin_or_url: str,
        quantity: int,
        attempt: int,
    ) -> CartDispatchResult | None:
        try:
            return await asyncio.wait_for(
                self._dispatcher.dispatch_add_to_cart(
                    request_id=request_id,
                    asin_or_url=asin_or_url,
                    quantity=quantity,
                    attempt=attempt,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise DispatchError(f'Cart dispatch timed out after {self._timeout:g}s') from exc
        except Exception as exc:  # noqa: BLE001 - boundary wrapper for dispatcher failures
            raise DispatchError(f'Cart dispatch failed: {exc}') from exc

    def _forget_watchdog(self, request_id: int, task: asyncio.Task) -> None:
        if self._watchdogs.get(request_id) is task:
            del self._watchdogs[request_id]
