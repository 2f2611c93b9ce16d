"""Tests for the WooCommerce adapter."""
import base64
import json

import httpx
import pytest

from app.models.database import EcommerceConnection
from app.models.ecommerce import InventoryUpdate
from app.services.ecommerce.base import AdapterError
from app.services.ecommerce.woocommerce import WooCommerceAdapter, split_handle

from tests.conftest import mock_client


def make_adapter(handler) -> WooCommerceAdapter:
    connection = EcommerceConnection(
        platform="woocommerce",
        store_url="https://shop.example.com/",
        api_key="ck_test",
        api_secret="cs_test"
    )
    return WooCommerceAdapter(connection, client=mock_client(handler), config={"write_cooldown": 0})


async def test_basic_auth_and_base_path():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"environment": {"version": "8.5"}, "settings": {"currency": "GBP"}})

    result = await make_adapter(handler).test_connection()

    expected = base64.b64encode(b"ck_test:cs_test").decode()
    assert result.success
    assert result.details["currency"] == "GBP"
    assert str(seen[0].url) == "https://shop.example.com/wp-json/wc/v3/system_status"
    assert seen[0].headers["Authorization"] == f"Basic {expected}"


async def test_connection_falls_back_to_products_endpoint():
    def handler(request):
        if request.url.path.endswith("/system_status"):
            return httpx.Response(403, json={"message": "Sorry, you cannot list resources."})
        return httpx.Response(200, json=[])

    result = await make_adapter(handler).test_connection()

    assert result.success


async def test_connection_reports_first_error_when_both_fail():
    def handler(request):
        if request.url.path.endswith("/system_status"):
            return httpx.Response(401, json={"message": "Invalid signature"})
        return httpx.Response(500, text="boom")

    result = await make_adapter(handler).test_connection()

    assert not result.success
    assert result.details["status"] == 401


async def test_fetch_products_expands_variations():
    def handler(request):
        path = request.url.path
        if path.endswith("/products/2/variations"):
            return httpx.Response(200, json=[
                {"id": 21, "sku": "TEE-S", "price": "10", "manage_stock": True, "stock_quantity": 4,
                 "attributes": [{"option": "S"}]},
                {"id": 22, "sku": "TEE-M", "price": "10", "manage_stock": "parent", "stock_quantity": None,
                 "attributes": [{"option": "M"}]},
            ])
        return httpx.Response(
            200,
            json=[
                {"id": 1, "type": "simple", "name": "Mug", "sku": "MUG", "price": "5",
                 "manage_stock": True, "stock_quantity": 8},
                {"id": 2, "type": "variable", "name": "Tee"},
                {"id": 3, "type": "grouped", "name": "Bundle"},
            ],
            headers={"X-WP-TotalPages": "2"}
        )

    page = await make_adapter(handler).fetch_products()

    assert page.has_more
    assert page.next_cursor == "2"
    assert [product.remote_sku for product in page.products] == ["MUG", "TEE-S", "TEE-M"]
    assert page.products[1].remote_variant_id == "21"
    assert page.products[1].variant_title == "S"
    assert page.products[2].manage_stock is False


async def test_fetch_inventory_reads_each_handle():
    def handler(request):
        if request.url.path.endswith("/products/1"):
            return httpx.Response(200, json={"id": 1, "manage_stock": True, "stock_quantity": 6})
        if request.url.path.endswith("/products/2/variations/21"):
            return httpx.Response(200, json={"id": 21, "manage_stock": True, "stock_quantity": 2})
        return httpx.Response(404, json={"code": "woocommerce_rest_product_invalid_id"})

    snapshots = await make_adapter(handler).fetch_inventory(["1", "2:21", "9"])

    assert [(snapshot.handle, snapshot.quantity) for snapshot in snapshots] == [("1", 6), ("2:21", 2)]
    assert snapshots[1].remote_variant_id == "21"


async def test_fetch_inventory_caps_handles():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"manage_stock": True, "stock_quantity": 1})

    snapshots = await make_adapter(handler).fetch_inventory([str(index) for index in range(25)])

    assert len(seen) == 20
    assert len(snapshots) == 20


async def test_fetch_inventory_propagates_transport_errors():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(AdapterError) as exc_info:
        await make_adapter(handler).fetch_inventory(["1"])

    assert exc_info.value.is_transport_error


async def test_update_inventory_batches_simple_products_and_checks_each_item():
    requests = []

    def handler(request):
        requests.append((request.method, request.url.path, json.loads(request.content)))
        if request.url.path.endswith("/products/batch"):
            return httpx.Response(200, json={"update": [
                {"id": 1, "manage_stock": True, "stock_quantity": 3},
                {"id": 2, "error": {"code": "woocommerce_rest_product_invalid_id", "message": "Invalid ID."}},
                {"id": 4, "manage_stock": False},
            ]})
        return httpx.Response(200, json={"id": 21, "manage_stock": True, "stock_quantity": 9})

    result = await make_adapter(handler).update_inventory([
        InventoryUpdate(handle="1", remote_product_id="1", quantity=3, manage_stock=True),
        InventoryUpdate(handle="2", remote_product_id="2", quantity=3, manage_stock=True),
        InventoryUpdate(handle="4", remote_product_id="4", quantity=3, manage_stock=True),
        InventoryUpdate(handle="5", remote_product_id="5", quantity=3, manage_stock=True),
        InventoryUpdate(handle="6", remote_product_id="6", quantity=3, manage_stock=False),
        InventoryUpdate(handle="7:21", remote_product_id="7", remote_variant_id="21", quantity=9, manage_stock=True),
    ])

    errors = {error.handle: error.error for error in result.errors}
    assert result.updated_handles == ["1", "7:21"]
    assert errors["2"] == "Invalid ID."
    assert errors["4"] == "Stock management is disabled for this item"
    assert errors["5"] == "Item missing from batch response"
    assert errors["6"] == "Stock management is disabled for this item"

    method, path, body = requests[0]
    assert (method, path) == ("POST", "/wp-json/wc/v3/products/batch")
    assert body == {"update": [{"id": product_id, "stock_quantity": 3} for product_id in (1, 2, 4, 5)]}
    assert requests[1][:2] == ("PUT", "/wp-json/wc/v3/products/7/variations/21")


async def test_update_inventory_reads_stock_flag_when_unknown():
    requests = []

    def handler(request):
        requests.append((request.method, request.url.path))
        path = request.url.path
        if path.endswith("/products/6"):
            return httpx.Response(200, json={"id": 6, "manage_stock": False, "stock_quantity": None})
        if path.endswith("/products/7"):
            return httpx.Response(200, json={"id": 7, "manage_stock": True, "stock_quantity": 2})
        if path.endswith("/products/8/variations/81"):
            return httpx.Response(200, json={"id": 81, "manage_stock": "parent", "stock_quantity": None})
        if path.endswith("/products/batch"):
            return httpx.Response(200, json={"update": [{"id": 7, "manage_stock": True, "stock_quantity": 3}]})
        return httpx.Response(404, json={"code": "woocommerce_rest_product_invalid_id", "message": "Invalid ID."})

    result = await make_adapter(handler).update_inventory([
        InventoryUpdate(handle="6", remote_product_id="6", quantity=3),
        InventoryUpdate(handle="7", remote_product_id="7", quantity=3),
        InventoryUpdate(handle="8:81", remote_product_id="8", remote_variant_id="81", quantity=3),
        InventoryUpdate(handle="9", remote_product_id="9", quantity=3),
    ])

    errors = {error.handle: error.error for error in result.errors}
    assert result.updated_handles == ["7"]
    assert errors["6"] == "Stock management is disabled for this item"
    assert errors["8:81"] == "Stock management is disabled for this item"
    assert errors["9"] == "Item not found"
    writes = [request for request in requests if request[0] != "GET"]
    assert writes == [("POST", "/wp-json/wc/v3/products/batch")]


async def test_find_product_by_sku_falls_back_to_variations():
    def handler(request):
        params = request.url.params
        if "sku" in params:
            return httpx.Response(200, json=[])
        if request.url.path.endswith("/products/2/variations"):
            return httpx.Response(200, json=[{"id": 21, "sku": "TEE-S", "manage_stock": True, "stock_quantity": 4}])
        return httpx.Response(200, json=[{"id": 2, "type": "variable", "name": "Tee"}],
                              headers={"X-WP-TotalPages": "1"})

    result = await make_adapter(handler).find_product_by_sku("TEE-S")

    assert result.found
    assert result.product.remote_product_id == "2"
    assert result.product.remote_variant_id == "21"
    assert result.product.quantity == 4


async def test_find_product_by_sku_direct_variation_hit():
    adapter = make_adapter(lambda request: httpx.Response(200, json=[
        {"id": 21, "type": "variation", "parent_id": 2, "name": "Tee - S", "sku": "TEE-S",
         "manage_stock": True, "stock_quantity": 4},
    ]))

    result = await adapter.find_product_by_sku("TEE-S")

    assert adapter.handle_for(result.product.remote_product_id, result.product.remote_variant_id, None) == "2:21"


def test_split_handle():
    assert split_handle("5") == ("5", None)
    assert split_handle("5:9") == ("5", "9")
