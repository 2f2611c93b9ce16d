"""Tests for the Etsy adapter."""
import base64
import hashlib
import json
from urllib.parse import parse_qs, urlparse

import httpx

from app.models.database import EcommerceConnection
from app.models.ecommerce import InventoryUpdate
from app.services.ecommerce.etsy import EtsyAdapter

from tests.conftest import mock_client


INVENTORY = {
    "products": [
        {
            "product_id": 501,
            "sku": "RING-S",
            "is_deleted": False,
            "property_values": [{"property_id": 100, "value_ids": [1], "property_name": "Size", "values": ["S"]}],
            "offerings": [{"offering_id": 1, "quantity": 3, "is_enabled": True, "is_deleted": False,
                           "price": {"amount": 2500, "divisor": 100}}],
        },
        {
            "product_id": 502,
            "sku": "RING-M",
            "is_deleted": False,
            "property_values": [{"property_id": 100, "value_ids": [2], "property_name": "Size", "values": ["M"]}],
            "offerings": [{"offering_id": 2, "quantity": 5, "is_enabled": True, "is_deleted": False,
                           "price": {"amount": 2500, "divisor": 100}}],
        },
    ],
    "price_on_property": [],
    "quantity_on_property": [100],
    "sku_on_property": [100],
}


def make_adapter(handler, **fields) -> EtsyAdapter:
    values = {"platform": "etsy", "api_key": "etsy-key", "access_token": "etsy-token", "shop_id": "77"}
    values.update(fields)
    return EtsyAdapter(EcommerceConnection(**values), client=mock_client(handler), config={"write_cooldown": 0})


async def test_headers_include_api_key_and_bearer_token():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"shop_name": "Rings", "currency_code": "USD", "url": "https://etsy.com/shop/r"})

    result = await make_adapter(handler).test_connection()

    assert result.success
    assert str(seen[0].url) == "https://openapi.etsy.com/v3/application/shops/77"
    assert seen[0].headers["x-api-key"] == "etsy-key"
    assert seen[0].headers["Authorization"] == "Bearer etsy-token"


async def test_shop_id_is_discovered():
    def handler(request):
        if request.url.path.endswith("/users/me"):
            return httpx.Response(200, json={"user_id": 1, "shop_id": 88})
        return httpx.Response(200, json={"shop_name": "Rings"})

    adapter = make_adapter(handler, shop_id=None)
    info = await adapter.get_shop_info()

    assert info.name == "Rings"
    assert adapter.shop_id == "88"


async def test_fetch_inventory_reads_variant_offering():
    adapter = make_adapter(lambda request: httpx.Response(200, json=INVENTORY))

    snapshots = await adapter.fetch_inventory(["9:502", "9"])

    assert [(snapshot.handle, snapshot.quantity) for snapshot in snapshots] == [("9:502", 5), ("9", 3)]


async def test_update_inventory_writes_whole_document_once_per_listing():
    requests = []

    def handler(request):
        requests.append(request)
        if request.method == "GET":
            return httpx.Response(200, json=INVENTORY)
        return httpx.Response(200, json={})

    adapter = make_adapter(handler)
    result = await adapter.update_inventory([
        InventoryUpdate(handle="9:501", remote_product_id="9", remote_variant_id="501", quantity=1),
        InventoryUpdate(handle="9:502", remote_product_id="9", remote_variant_id="502", quantity=7),
        InventoryUpdate(handle="9:999", remote_product_id="9", remote_variant_id="999", quantity=2),
    ])

    assert result.updated_handles == ["9:501", "9:502"]
    assert [error.handle for error in result.errors] == ["9:999"]
    assert [request.method for request in requests] == ["GET", "PUT"]

    payload = json.loads(requests[1].content)
    assert [product["offerings"][0]["quantity"] for product in payload["products"]] == [1, 7]
    assert payload["products"][0]["offerings"][0]["price"] == 25.0
    assert payload["quantity_on_property"] == [100]
    assert "product_id" not in payload["products"][0]


async def test_fetch_products_pages_by_offset():
    def handler(request):
        if request.url.path.endswith("/listings/active"):
            return httpx.Response(200, json={"count": 3, "results": [
                {"listing_id": 9, "title": "Ring", "has_variations": True},
                {"listing_id": 10, "title": "Print", "has_variations": False, "skus": ["PRINT"], "quantity": 4,
                 "price": {"amount": 1000, "divisor": 100}},
            ]})
        return httpx.Response(200, json=INVENTORY)

    page = await make_adapter(handler).fetch_products()

    assert page.next_cursor == "2"
    assert [product.remote_sku for product in page.products] == ["RING-S", "RING-M", "PRINT"]
    assert page.products[0].variant_title == "S"
    assert page.products[2].price == 10.0


def test_pkce_challenge_matches_verifier():
    verifier, challenge = EtsyAdapter.generate_pkce()

    digest = hashlib.sha256(verifier.encode()).digest()
    assert challenge == base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
    assert 43 <= len(verifier) <= 128


def test_authorization_url():
    adapter = make_adapter(lambda request: httpx.Response(200))

    url = adapter.build_authorization_url("state-1", "app://callback", "challenge-1")

    query = parse_qs(urlparse(url).query)
    assert url.startswith("https://www.etsy.com/oauth/connect?")
    assert query["client_id"] == ["etsy-key"]
    assert query["state"] == ["state-1"]
    assert query["code_challenge"] == ["challenge-1"]
    assert query["code_challenge_method"] == ["S256"]


async def test_refresh_token_updates_credentials():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"access_token": "new", "refresh_token": "new-refresh", "expires_in": 3600})

    adapter = make_adapter(handler, refresh_token="old-refresh")
    result = await adapter.refresh_token()

    form = parse_qs(seen[0].content.decode())
    assert str(seen[0].url) == "https://api.etsy.com/v3/public/oauth/token"
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["old-refresh"]
    assert result.refreshed
    assert adapter.access_token == "new"
    assert adapter.refresh_token_value == "new-refresh"
