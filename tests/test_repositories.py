"""Tests for the SQLAlchemy repositories."""
import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from app.models.database import EcommerceConnection, ProductMapping


async def test_credentials_are_encrypted_at_rest(session_factory, connection_repository):
    connection = await connection_repository.create(EcommerceConnection(
        platform="woocommerce", store_url="shop.example.com", api_key="ck", api_secret="cs_secret"
    ))

    async with session_factory() as session:
        raw = (await session.execute(
            text("SELECT api_secret FROM ecommerce_connections WHERE id = :id"), {"id": connection.id}
        )).scalar_one()

    assert raw != "cs_secret"
    assert (await connection_repository.get_by_id(connection.id)).api_secret == "cs_secret"


async def test_set_stock_writes_ledger_entry(product_repository, make_product):
    product = await make_product(quantity=10)

    entry = await product_repository.set_stock(product.id, 4, reason="platform sync")
    unchanged = await product_repository.set_stock(product.id, 4, reason="platform sync")

    assert entry.type == "adjustment_out"
    assert entry.quantity_change == -6
    assert entry.quantity_before == 10
    assert entry.quantity_after == 4
    assert unchanged is None
    assert await product_repository.get_stock_levels([product.id]) == {product.id: 4}


async def test_set_stock_unknown_product(product_repository):
    assert await product_repository.set_stock("missing", 1, reason="platform sync") is None


async def test_one_mapping_per_product_and_connection(mapping_repository, connection, make_product, make_mapping):
    product = await make_product()
    await make_mapping(product, connection, "1")

    with pytest.raises(IntegrityError):
        await mapping_repository.create(ProductMapping(
            product_id=product.id, connection_id=connection.id, remote_product_id="other"
        ))


async def test_list_by_remote_ignores_inactive_connections(
    mapping_repository, connection_repository, connection, make_product, make_mapping
):
    product = await make_product()
    mapping = await make_mapping(product, connection, "42")

    found = await mapping_repository.list_by_remote("shopify", "remote_inventory_item_id", "42")
    assert [match.id for match in found] == [mapping.id]
    assert await mapping_repository.list_by_remote("etsy", "remote_inventory_item_id", "42") == []

    await connection_repository.update_fields(connection.id, {"is_active": False})
    assert await mapping_repository.list_by_remote("shopify", "remote_inventory_item_id", "42") == []


async def test_list_by_remote_filters_by_variant(mapping_repository, connection, make_product, make_mapping):
    first = await make_mapping(await make_product("First", "F", 1), connection, "1")
    second = await make_mapping(await make_product("Second", "S", 1), connection, "2")
    await mapping_repository.update_fields(second.id, {"remote_product_id": first.remote_product_id})

    both = await mapping_repository.list_by_remote("shopify", "remote_product_id", first.remote_product_id)
    only_second = await mapping_repository.list_by_remote(
        "shopify", "remote_product_id", first.remote_product_id, variant_id=second.remote_variant_id
    )

    assert {match.id for match in both} == {first.id, second.id}
    assert [match.id for match in only_second] == [second.id]


async def test_list_with_products_orders_by_name(mapping_repository, connection, make_product, make_mapping):
    zebra = await make_product("Zebra", "Z", 1)
    apple = await make_product("Apple", "A", 1)
    await make_mapping(zebra, connection, "1")
    await make_mapping(apple, connection, "2")

    rows = await mapping_repository.list_with_products(connection.id)

    assert [product.name for _, product in rows] == ["Apple", "Zebra"]
