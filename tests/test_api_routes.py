from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport

from procurement.api.core.container import Container, get_container
from procurement.app.main import app
from procurement.config import Settings
from procurement.domain.requests import InMemoryPurchaseRequestRepository
from procurement.integrations.metadata import ProductMetadata

from tests.fixtures.fake_cart_dispatcher import FakeCartDispatcher
from tests.fixtures.fake_metadata_extractor import FakeMetadataExtractor

EMPLOYEE = {"X-User-Id": "10", "X-User-Role": "employee"}
OTHER_EMPLOYEE = {"X-User-Id": "11", "X-User-Role": "employee"}
MANAGER = {"X-User-Id": "2", "X-User-Role": "general_manager"}
SUPPLY_CHAIN = {"X-User-Id": "3", "X-User-Role": "supply_chain_manager"}
ADMIN = {"X-User-Id": "1", "X-User-Role": "admin"}
CART = {"X-Cart-Callback-Token": "cart-secret"}

AMAZON_DRAFT = {
    "url": "https://www.amazon.com.mx/dp/B08N5WRWNW",
    "quantity": 2,
    "justification": "Second monitor for the design team",
    "urgency": "urgent",
    "product_title": "27in monitor",
    "product_image_url": "https://images.example.com/monitor.jpg",
}
SHOP_DRAFT = {
    "url": "https://shop.example.com/products/desk-lamp",
    "quantity": 1,
    "justification": "Desk lamp for the night shift",
    "product_title": "Desk lamp",
    "product_image_url": "https://images.example.com/lamp.jpg",
}


@pytest.fixture
def dispatcher():
    return FakeCartDispatcher()


@pytest.fixture
def extractor():
    return FakeMetadataExtractor()


@pytest.fixture
def container(dispatcher, extractor):
    container = Container(
        Settings(auto_purchase_on_cart_success=True, cart_callback_token="cart-secret"),
        repository=InMemoryPurchaseRequestRepository(),
        cart_dispatcher=dispatcher,
        metadata_extractor=extractor,
    )
    app.dependency_overrides[get_container] = lambda: container
    yield container
    app.dependency_overrides.clear()


@pytest.fixture
async def client(container):
    transport = ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def submit(client, draft=SHOP_DRAFT, headers=EMPLOYEE) -> dict:
    resp = await client.post("/v1/requests", json=draft, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.anyio
async def test_submit_returns_pending_request(client) -> None:
    # Act
    resp = await client.post("/v1/requests", json=AMAZON_DRAFT, headers=EMPLOYEE)

    # Assert
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending"
    assert body["request_number"].startswith("REQ-")
    assert body["is_amazon_url"] is True
    assert body["amazon_asin"] == "B08N5WRWNW"
    assert body["requester_id"] == 10
    assert [h["action"] for h in body["history"]] == ["created"]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"X-User-Id": "10"},
        {"X-User-Id": "10", "X-User-Role": "intern"},
    ],
)
async def test_missing_or_unknown_actor_is_unauthorized(client, headers) -> None:
    resp = await client.post("/v1/requests", json=SHOP_DRAFT, headers=headers)

    assert resp.status_code == 401


@pytest.mark.anyio
async def test_employee_cannot_approve(client) -> None:
    created = await submit(client)

    resp = await client.post(f"/v1/approvals/{created['id']}/approve", headers=EMPLOYEE)

    assert resp.status_code == 403


@pytest.mark.anyio
async def test_reject_without_reason_is_a_bad_request(client) -> None:
    created = await submit(client)

    resp = await client.post(f"/v1/approvals/{created['id']}/reject", json={"comment": "  "}, headers=MANAGER)

    assert resp.status_code == 400


@pytest.mark.anyio
async def test_second_decision_conflicts(client) -> None:
    created = await submit(client)
    first = await client.post(f"/v1/approvals/{created['id']}/approve", headers=MANAGER)

    second = await client.post(
        f"/v1/approvals/{created['id']}/reject", json={"comment": "changed my mind"}, headers=ADMIN
    )

    assert first.status_code == 200
    assert second.status_code == 409


@pytest.mark.anyio
async def test_unknown_request_is_not_found(client) -> None:
    resp = await client.get("/v1/requests/999", headers=ADMIN)

    assert resp.status_code == 404


@pytest.mark.anyio
async def test_employee_cannot_read_other_requests(client) -> None:
    created = await submit(client, headers=OTHER_EMPLOYEE)

    resp = await client.get(f"/v1/requests/{created['id']}", headers=EMPLOYEE)

    assert resp.status_code == 403


@pytest.mark.anyio
async def test_amazon_approval_flows_through_the_cart(client, container, dispatcher) -> None:
    # Arrange
    created = await submit(client, draft=AMAZON_DRAFT)

    # Act
    approved = await client.post(
        f"/v1/approvals/{created['id']}/approve", json={"comment": "Go ahead"}, headers=MANAGER
    )
    await container.workflow_engine.drain()
    resp = await client.get(f"/v1/requests/{created['id']}", headers=EMPLOYEE)

    # Assert
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    assert dispatcher.calls == [
        {"request_id": created["id"], "asin_or_url": "B08N5WRWNW", "quantity": 2, "attempt": 1}
    ]
    body = resp.json()
    assert body["status"] == "purchased"
    assert body["added_to_cart"] is True
    assert [h["action"] for h in body["history"]] == ["created", "approved", "cart_added"]


@pytest.mark.anyio
async def test_cart_callback_records_result_once(client, container, dispatcher) -> None:
    # Arrange
    dispatcher.results.append(None)
    created = await submit(client, draft=AMAZON_DRAFT)
    await client.post(f"/v1/approvals/{created['id']}/approve", headers=MANAGER)
    await container.workflow_engine.drain()

    # Act
    failed = await client.post(
        f"/v1/callbacks/cart-dispatch/{created['id']}",
        json={"success": False, "error": "captcha", "attempt": 1},
        headers=CART,
    )
    retried = await client.post(f"/v1/orders/{created['id']}/retry-cart", headers=ADMIN)
    await container.workflow_engine.drain()
    late = await client.post(
        f"/v1/callbacks/cart-dispatch/{created['id']}", json={"success": True, "attempt": 1}, headers=CART
    )

    # Assert
    assert failed.status_code == 200
    assert failed.json()["cart_error"] == "captcha"
    assert retried.status_code == 200
    assert retried.json()["cart_error"] is None
    assert late.status_code == 409


@pytest.mark.anyio
async def test_stale_cart_failure_does_not_touch_the_current_attempt(client, container, dispatcher) -> None:
    # Arrange: attempt 1 fails, the retried attempt 2 is accepted
    dispatcher.results.extend([None, None])
    created = await submit(client, draft=AMAZON_DRAFT)
    url = f"/v1/callbacks/cart-dispatch/{created['id']}"
    await client.post(f"/v1/approvals/{created['id']}/approve", headers=MANAGER)
    await container.workflow_engine.drain()
    await client.post(url, json={"success": False, "error": "captcha", "attempt": 1}, headers=CART)
    await client.post(f"/v1/orders/{created['id']}/retry-cart", headers=ADMIN)
    await container.workflow_engine.drain()

    # Act
    stale = await client.post(url, json={"success": False, "error": "captcha", "attempt": 1}, headers=CART)
    current = await client.post(url, json={"success": True, "attempt": 2}, headers=CART)

    # Assert
    assert stale.status_code == 409
    assert current.status_code == 200
    assert current.json()["status"] == "purchased"
    assert current.json()["cart_error"] is None
    assert [h["action"] for h in current.json()["history"]] == [
        "created",
        "approved",
        "cart_failed",
        "cart_retried",
        "cart_added",
    ]
    await container.workflow_engine.close()


@pytest.mark.anyio
@pytest.mark.parametrize(
    "headers, status_code",
    [
        ({}, 401),
        (EMPLOYEE, 401),
        ({"X-Cart-Callback-Token": "guess"}, 403),
    ],
)
async def test_cart_callback_requires_the_automation_token(
    client, container, dispatcher, headers, status_code
) -> None:
    dispatcher.results.append(None)
    created = await submit(client, draft=AMAZON_DRAFT)
    await client.post(f"/v1/approvals/{created['id']}/approve", headers=MANAGER)
    await container.workflow_engine.drain()

    resp = await client.post(f"/v1/callbacks/cart-dispatch/{created['id']}", json={"success": True}, headers=headers)

    assert resp.status_code == status_code
    record = container.repository.get(created["id"])
    assert record.status.value == "approved"
    assert record.added_to_cart is False
    await container.workflow_engine.close()


@pytest.mark.anyio
async def test_cart_callback_is_refused_when_no_token_is_configured(dispatcher) -> None:
    container = Container(
        Settings(cart_callback_token=""),
        repository=InMemoryPurchaseRequestRepository(),
        cart_dispatcher=dispatcher,
        metadata_extractor=FakeMetadataExtractor(),
    )
    app.dependency_overrides[get_container] = lambda: container
    try:
        async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            resp = await client.post("/v1/callbacks/cart-dispatch/1", json={"success": True}, headers=CART)
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 403


@pytest.mark.anyio
async def test_shutdown_finishes_in_flight_cart_dispatches(container) -> None:
    # Arrange
    async with app.router.lifespan_context(app):
        async with httpx.AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            created = await submit(client, draft=AMAZON_DRAFT)

            # Act
            approved = await client.post(f"/v1/approvals/{created['id']}/approve", headers=MANAGER)

    # Assert
    assert approved.status_code == 200
    record = container.repository.get(created["id"])
    assert record.status.value == "purchased"
    assert record.added_to_cart is True


@pytest.mark.anyio
async def test_extract_metadata_returns_product_details(client, extractor) -> None:
    extractor.metadata = ProductMetadata(title="27in monitor", price=4999.0, currency="MXN")

    resp = await client.post(
        "/v1/requests/extract-metadata", json={"url": AMAZON_DRAFT["url"]}, headers=EMPLOYEE
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["url"] == AMAZON_DRAFT["url"]
    assert body["title"] == "27in monitor"
    assert body["price"] == 4999.0
    assert body["is_amazon"] is True
    assert body["asin"] == "B08N5WRWNW"
    assert body["error"] is None


@pytest.mark.anyio
async def test_extract_metadata_failure_is_a_partial_response(client, extractor) -> None:
    extractor.error = ConnectionError("scraper offline")

    resp = await client.post(
        "/v1/requests/extract-metadata", json={"url": AMAZON_DRAFT["url"]}, headers=EMPLOYEE
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["error"] == "Failed to extract metadata: scraper offline"
    assert body["currency"] == "MXN"
    assert body["is_amazon"] is True
    assert body["asin"] == "B08N5WRWNW"


@pytest.mark.anyio
async def test_extract_metadata_validates_url_and_caller(client) -> None:
    invalid = await client.post("/v1/requests/extract-metadata", json={"url": "not a link"}, headers=EMPLOYEE)
    anonymous = await client.post("/v1/requests/extract-metadata", json={"url": SHOP_DRAFT["url"]})

    assert invalid.status_code == 400
    assert anonymous.status_code == 401


@pytest.mark.anyio
async def test_info_request_and_resubmit(client) -> None:
    created = await submit(client)

    returned = await client.post(
        f"/v1/approvals/{created['id']}/request-info", json={"comment": "Which model?"}, headers=MANAGER
    )
    unchanged = await client.post(
        f"/v1/requests/{created['id']}/resubmit", json={"quantity": 1}, headers=EMPLOYEE
    )
    resubmitted = await client.post(
        f"/v1/requests/{created['id']}/resubmit", json={"justification": "The LED model"}, headers=EMPLOYEE
    )

    assert returned.json()["status"] == "info_requested"
    assert unchanged.status_code == 400
    assert resubmitted.status_code == 200
    assert resubmitted.json()["status"] == "pending"


@pytest.mark.anyio
async def test_cancel_by_owner(client) -> None:
    created = await submit(client)

    denied = await client.post(f"/v1/requests/{created['id']}/cancel", headers=OTHER_EMPLOYEE)
    cancelled = await client.post(f"/v1/requests/{created['id']}/cancel", headers=EMPLOYEE)

    assert denied.status_code == 403
    assert cancelled.json()["status"] == "cancelled"


@pytest.mark.anyio
async def test_orders_and_manual_purchase(client) -> None:
    # Arrange
    created = await submit(client)
    await client.post(f"/v1/approvals/{created['id']}/approve", headers=MANAGER)

    # Act
    manual = await client.get("/v1/orders", params={"filter": "pending_manual"}, headers=SUPPLY_CHAIN)
    forbidden = await client.post(f"/v1/orders/{created['id']}/mark-purchased", headers=SUPPLY_CHAIN)
    purchased = await client.post(
        f"/v1/orders/{created['id']}/mark-purchased", json={"notes": "Paid by card"}, headers=ADMIN
    )

    # Assert
    assert [r["id"] for r in manual.json()["data"]] == [created["id"]]
    assert forbidden.status_code == 403
    assert purchased.status_code == 200
    assert purchased.json()["purchase_notes"] == "Paid by card"


@pytest.mark.anyio
async def test_approval_queue_and_stats(client) -> None:
    # Arrange
    first = await submit(client)
    await submit(client, draft={**SHOP_DRAFT, "urgency": "urgent"})
    await submit(client, headers=OTHER_EMPLOYEE)

    # Act
    queue = await client.get("/v1/approvals", headers=MANAGER)
    mine = await client.get("/v1/requests", headers=EMPLOYEE)
    stats = await client.get("/v1/requests/stats", headers=ADMIN)

    # Assert
    assert queue.json()["meta"]["total"] == 3
    assert queue.json()["data"][0]["urgency"] == "urgent"
    assert queue.json()["data"][1]["id"] == first["id"]
    assert mine.json()["meta"]["total"] == 2
    assert stats.json()["pending"] == 3
    assert stats.json()["urgent"] == 1
    assert stats.json()["total"] == 3
