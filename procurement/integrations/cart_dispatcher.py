"""Amazon Business cart dispatch.

The browser automation that logs into Amazon Business and fills the shared
cart runs as its own service. The workflow only hands it a product and a
quantity and later learns whether the item made it into the cart.
"""

from __future__ import annotations

from typing import Protocol

import httpx
from pydantic import BaseModel


class CartDispatchResult(BaseModel):
    """Outcome reported by the cart automation."""

    success: bool
    error: str | None = None
    # Dispatch attempt this result answers; None means the latest one
    attempt: int | None = None


class CartDispatcher(Protocol):
    async def dispatch_add_to_cart(
        self,
        *,
        request_id: int,
        asin_or_url: str,
        quantity: int,
        attempt: int,
    ) -> CartDispatchResult | None:
        """Add the product to the managed cart.

        Returns the outcome, or None when the automation accepted the job
        and will report the outcome through the dispatch callback.
        """
        ...


class HttpCartDispatcher:
    """Dispatch cart jobs by calling the automation service over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Create an HTTP cart dispatcher.

        Args:
            base_url: Base URL of the cart automation service (e.g. http://amazon-bot:8002/v1).
            timeout: Per-call HTTP timeout in seconds.
            client: Optional injected httpx client for testing / transport control.
        """
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout
        self._client = client

    async def dispatch_add_to_cart(
        self,
        *,
        request_id: int,
        asin_or_url: str,
        quantity: int,
        attempt: int,
    ) -> CartDispatchResult | None:
        url = f'{self._base_url}/cart/items'
        payload = {
            'request_id': request_id,
            'asin_or_url': asin_or_url,
            'quantity': quantity,
            'attempt': attempt,
        }

        if self._client is not None:
            resp = await self._client.post(url, json=payload, timeout=self._timeout)
        else:
            async with httpx.AsyncClient() as client:
                resp = await client.post(url, json=payload, timeout=self._timeout)

        resp.raise_for_status()
        if resp.status_code == 202:
            return None
        return CartDispatchResult.model_validate(resp.json())
