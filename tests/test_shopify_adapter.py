"""Tests for the Shopify adapter."""
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.models.database import EcommerceConnection
from app.models.ecommerce import InventoryUpdate
from app.services.ecommerce.base import AdapterError
from app.services.ecommerce.shopify import ShopifyAdapter

from tests.conftest import mock_client

BASE = "https://test-shop.myshopify.com/admin/api/2024-01"


def make_adapter(handler, location_id: str | None = "1") -> ShopifyAdapter:
    connection = EcommerceConnection(
        platform="shopify",
        store_url="test-shop.myshopify.com",
        access_token="shpat_test",
        location_id=location_id
    )
    return ShopifyAdapter(connection, client=mock_client(handler), config={"write_cooldown": 0})


async def test_requests_carry_access_token():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"shop": {"name": "Test Shop", "domain": "test-shop.com", "currency": "EUR"}})

    adapter = make_adapter(handler)
    result = await adapter.test_connection()

    assert result.success
    assert result.details["currency"] == "EUR"
    assert str(seen[0].url) == f"{BASE}/shop.json"
    assert seen[0].headers["X-Shopify-Access-Token"] == "shpat_test"


async def test_connection_failure_is_reported_not_raised():
    adapter = make_adapter(lambda request: httpx.Response(401, json={"errors": "Invalid API key"}))

    result = await adapter.test_connection()

    assert not result.success
    assert result.details["status"] == 401
    assert result.details["details"] == "Invalid API key"


async def test_transport_error_is_normalized():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    adapter = make_adapter(handler)

    with pytest.raises(AdapterError) as exc_info:
        await adapter.fetch_inventory(["1"])

    assert exc_info.value.status == 0
    assert exc_info.value.is_transport_error


async def test_fetch_inventory_truncates_to_batch_cap():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"inventory_levels": [
            {"inventory_item_id": 1, "location_id": 1, "available": 4},
            {"inventory_item_id": 2, "location_id": 1, "available": None},
        ]})

    adapter = make_adapter(handler)
    snapshots = await adapter.fetch_inventory([str(index) for index in range(60)])

    requested = seen[0].url.params["inventory_item_ids"].split(",")
    assert len(requested) == 50
    assert seen[0].url.params["location_ids"] == "1"
    assert snapshots[0].handle == "1"
    assert snapshots[0].quantity == 4
    assert snapshots[1].manage_stock is False


async def test_location_is_resolved_once():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if request.url.path.endswith("/locations.json"):
            return httpx.Response(200, json={"locations": [
                {"id": 5, "active": False},
                {"id": 9, "active": True},
            ]})
        return httpx.Response(200, json={"inventory_levels": []})

    adapter = make_adapter(handler, location_id=None)
    await adapter.fetch_inventory(["1"])
    await adapter.fetch_inventory(["2"])

    assert adapter.location_id == "9"
    assert sum(path.endswith("/locations.json") for path in calls) == 1


async def test_no_active_location():
    adapter = make_adapter(lambda request: httpx.Response(200, json={"locations": []}), location_id=None)

    with pytest.raises(AdapterError, match="No inventory locations found"):
        await adapter.fetch_inventory(["1"])


async def test_update_inventory_reports_per_item_outcome():
    bodies = []

    def handler(request):
        body = json.loads(request.content)
        bodies.append(body)
        if body["inventory_item_id"] == 2:
            return httpx.Response(422, json={"errors": ["Inventory item does not exist"]})
        return httpx.Response(200, json={"inventory_level": body})

    adapter = make_adapter(handler)
    result = await adapter.update_inventory([
        InventoryUpdate(handle="1", remote_product_id="10", quantity=3),
        InventoryUpdate(handle="2", remote_product_id="20", quantity=4),
        InventoryUpdate(handle="3", remote_product_id="30", quantity=5, manage_stock=False),
    ])

    assert not result.success
    assert result.updated == 1
    assert result.updated_handles == ["1"]
    assert {error.handle for error in result.errors} == {"2", "3"}
    assert bodies[0] == {"location_id": 1, "inventory_item_id": 1, "available": 3}
    assert len(bodies) == 2


async def test_writes_are_spaced_by_cooldown():
    adapter = make_adapter(lambda request: httpx.Response(200, json={}))
    adapter.write_cooldown_seconds = 0.5

    with patch("app.services.ecommerce.base.asyncio.sleep", new_callable=AsyncMock) as sleep:
        await adapter.update_inventory([
            InventoryUpdate(handle="1", remote_product_id="10", quantity=1),
            InventoryUpdate(handle="2", remote_product_id="20", quantity=2),
        ])

    assert sleep.await_count == 2
    sleep.assert_awaited_with(0.5)


async def test_low_call_budget_pauses_next_request():
    adapter = make_adapter(lambda request: httpx.Response(
        200, json={"shop": {}}, headers={"X-Shopify-Shop-Api-Call-Limit": "39/40"}
    ))

    with patch("app.services.ecommerce.base.asyncio.sleep", new_callable=AsyncMock) as sleep:
        await adapter.get_shop_info()
        assert adapter.rate_limit_remaining == 1
        sleep.assert_not_awaited()

        await adapter.get_shop_info()
        sleep.assert_awaited_once_with(0.5)


async def test_fetch_products_follows_link_header():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json={"products": [{
                "id": 10,
                "title": "Mug",
                "variants": [
                    {"id": 11, "title": "Default Title", "sku": "MUG", "price": "4.50",
                     "inventory_item_id": 12, "inventory_management": "shopify", "inventory_quantity": 7},
                    {"id": 13, "title": "Large", "sku": "", "price": "6.00",
                     "inventory_item_id": 14, "inventory_management": None, "inventory_quantity": 0},
                ],
            }]},
            headers={"Link": f'<{BASE}/products.json?limit=50&page_info=abc123>; rel="next"'}
        )

    adapter = make_adapter(handler)
    page = await adapter.fetch_products()
    await adapter.fetch_products(page.next_cursor)

    assert page.has_more
    assert page.next_cursor == "abc123"
    tracked, untracked = page.products
    assert tracked.remote_inventory_item_id == "12"
    assert tracked.variant_title is None
    assert tracked.quantity == 7
    assert untracked.manage_stock is False
    assert untracked.quantity is None
    assert untracked.remote_sku is None
    assert seen[1].url.params["page_info"] == "abc123"


async def test_find_product_by_sku_uses_graphql():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"data": {"productVariants": {"edges": [
            {"node": {"id": "gid://shopify/ProductVariant/2", "sku": "MUG-XL", "title": "XL", "price": "5.00",
                      "inventoryQuantity": 1, "inventoryItem": {"id": "gid://shopify/InventoryItem/9", "tracked": True},
                      "product": {"id": "gid://shopify/Product/1", "title": "Mug"}}},
            {"node": {"id": "gid://shopify/ProductVariant/3", "sku": "MUG", "title": "Default Title", "price": "4.00",
                      "inventoryQuantity": 6, "inventoryItem": {"id": "gid://shopify/InventoryItem/8", "tracked": True},
                      "product": {"id": "gid://shopify/Product/1", "title": "Mug"}}},
        ]}}})

    adapter = make_adapter(handler)
    result = await adapter.find_product_by_sku("MUG")

    assert seen[0]["variables"] == {"query": 'sku:"MUG"'}
    assert result.found
    assert result.product.remote_product_id == "1"
    assert result.product.remote_variant_id == "3"
    assert result.product.remote_inventory_item_id == "8"
    assert result.product.quantity == 6


async def test_graphql_errors_raise():
    adapter = make_adapter(lambda request: httpx.Response(200, json={"errors": [{"message": "Throttled"}]}))

    with pytest.raises(AdapterError, match="GraphQL"):
        await adapter.find_product_by_sku("MUG")


def test_handle_is_inventory_item_id():
    adapter = make_adapter(lambda request: httpx.Response(200))

    assert adapter.handle_for("10", "11", "12") == "12"
    assert adapter.handle_for("10", "11", None) is None
