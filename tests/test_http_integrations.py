from __future__ import annotations

import httpx
import pytest
from httpx import MockTransport

from procurement.integrations.cart_dispatcher import CartDispatchResult, HttpCartDispatcher
from procurement.integrations.metadata import HttpMetadataExtractor

from tests.fixtures.cart_service_stub import cart_service_stub, metadata_service_stub


@pytest.mark.anyio
async def test_http_dispatcher_returns_synchronous_result() -> None:
    # Arrange
    transport = MockTransport(cart_service_stub)

    async with httpx.AsyncClient(transport=transport, base_url='http://test') as client:
        dispatcher = HttpCartDispatcher(base_url='http://test/v1', client=client)

        # Act
        ok = await dispatcher.dispatch_add_to_cart(request_id=1, asin_or_url='B08N5WRWNW', quantity=2, attempt=1)
        failed = await dispatcher.dispatch_add_to_cart(
            request_id=2, asin_or_url='FAIL000001', quantity=1, attempt=3
        )

    # Assert
    assert ok == CartDispatchResult(success=True, attempt=1)
    assert failed == CartDispatchResult(success=False, error='Product unavailable', attempt=3)


@pytest.mark.anyio
async def test_http_dispatcher_treats_202_as_accepted() -> None:
    transport = MockTransport(cart_service_stub)

    async with httpx.AsyncClient(transport=transport, base_url='http://test') as client:
        dispatcher = HttpCartDispatcher(base_url='http://test/v1/', client=client)
        result = await dispatcher.dispatch_add_to_cart(request_id=3, asin_or_url='ASYNC00001', quantity=1, attempt=1)

    assert result is None


@pytest.mark.anyio
async def test_http_dispatcher_raises_on_server_error() -> None:
    transport = MockTransport(lambda request: httpx.Response(status_code=503, json={'error': 'busy'}))

    async with httpx.AsyncClient(transport=transport, base_url='http://test') as client:
        dispatcher = HttpCartDispatcher(base_url='http://test/v1', client=client)

        with pytest.raises(httpx.HTTPStatusError):
            await dispatcher.dispatch_add_to_cart(request_id=4, asin_or_url='B08N5WRWNW', quantity=1, attempt=1)


@pytest.mark.anyio
async def test_http_metadata_extractor_parses_product() -> None:
    # Arrange
    transport = MockTransport(metadata_service_stub)

    async with httpx.AsyncClient(transport=transport, base_url='http://test') as client:
        extractor = HttpMetadataExtractor(base_url='http://test/v1', client=client)

        # Act
        metadata = await extractor.extract_metadata('https://shop.example.com/dock')

    # Assert
    assert metadata.title == 'USB-C Dock'
    assert metadata.image_url == 'https://images.example.com/dock.jpg'
    assert metadata.price == 1499.0
    assert metadata.is_amazon is False
    assert metadata.error is None
