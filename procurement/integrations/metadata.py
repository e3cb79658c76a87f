"""Product metadata lookup for submitted URLs."""

from __future__ import annotations

from typing import Protocol

import httpx
from pydantic import BaseModel


class ProductMetadata(BaseModel):
    title: str = ''
    description: str = ''
    image_url: str = ''
    price: float | None = None
    currency: str | None = None
    is_amazon: bool = False
    asin: str | None = None
    error: str | None = None


class MetadataExtractor(Protocol):
    async def extract_metadata(self, url: str) -> ProductMetadata:
        ...


class HttpMetadataExtractor:
    """Ask the scraping service for a product page's title, image and price."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip('/')
        self._timeout = timeout
        self._client = client

    async def extract_metadata(self, url: str) -> ProductMetadata:
        endpoint = f'{self._base_url}/extract'

        if self._client is not None:
            resp = await self._client.post(endpoint, json={'url': url}, timeout=self._timeout)
        else:
            async with httpx.AsyncClient() as client:
                resp = await client.post(endpoint, json={'url': url}, timeout=self._timeout)

        resp.raise_for_status()
        return ProductMetadata.model_validate(resp.json())
