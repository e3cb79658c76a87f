# ------------------------------------------------------------------------------
# Stub transports for the cart automation and metadata services
# ------------------------------------------------------------------------------
from httpx import Response, Request
import json


def cart_service_stub(request: Request) -> Response:
    """
    Stubbed HTTP transport for the cart automation service.

    - ASINs starting with "ASYNC" are accepted for later (202)
    - ASINs starting with "FAIL" report a failed cart add
    - Anything else is added synchronously
    """
    assert request.method == "POST"

    if request.url.path != "/v1/cart/items":
        return Response(status_code=404, json={"error": f"Unhandled path {request.url.path}"})

    payload = json.loads(request.content.decode("utf-8"))
    item = payload["asin_or_url"]
    attempt = payload["attempt"]

    if item.startswith("ASYNC"):
        return Response(status_code=202, json={"accepted": True})
    if item.startswith("FAIL"):
        return Response(status_code=200, json={"success": False, "error": "Product unavailable", "attempt": attempt})
    return Response(status_code=200, json={"success": True, "error": None, "attempt": attempt})


def metadata_service_stub(request: Request) -> Response:
    assert request.method == "POST"

    if request.url.path != "/v1/extract":
        return Response(status_code=404, json={"error": f"Unhandled path {request.url.path}"})

    payload = json.loads(request.content.decode("utf-8"))
    return Response(
        status_code=200,
        json={
            "title": "USB-C Dock",
            "description": "Docking station",
            "image_url": "https://images.example.com/dock.jpg",
            "price": 1499.0,
            "currency": "MXN",
            "is_amazon": "amazon." in payload["url"],
            "asin": None,
            "error": None,
        },
    )
