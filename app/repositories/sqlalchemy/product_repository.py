"""SQLAlchemy implementation of the local product store."""
import structlog
from sqlalchemy import exists, select

from app.models.database import InventoryLog, Product, ProductMapping
from app.repositories.interfaces.product_repository import ProductRepository
from app.repositories.sqlalchemy.base_repository import SQLAlchemyBaseRepository


logger = structlog.get_logger()


class SQLAlchemyProductRepository(SQLAlchemyBaseRepository[Product], ProductRepository):
    """SQLAlchemy implementation of product repository."""

    model = Product

    async def list_with_sku(self) -> list[Product]:
        async with self.session_factory() as session:
            stmt = (
                select(Product)
                .where(Product.is_active.is_(True), Product.sku.is_not(None), Product.sku != "")
                .order_by(Product.name)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_unmapped(self, connection_id: str) -> list[Product]:
        async with self.session_factory() as session:
            mapped = exists().where(
                ProductMapping.product_id == Product.id,
                ProductMapping.connection_id == connection_id
            )
            stmt = (
                select(Product)
                .where(Product.is_active.is_(True), ~mapped)
                .order_by(Product.name)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_stock_levels(self, product_ids: list[str]) -> dict[str, int]:
        if not product_ids:
            return {}
        async with self.session_factory() as session:
            stmt = select(Product.id, Product.stock_quantity).where(Product.id.in_(product_ids))
            result = await session.execute(stmt)
            return {product_id: quantity for product_id, quantity in result.all()}

    async def set_stock(self, product_id: str, new_quantity: int, reason: str) -> InventoryLog | None:
        """Set stock and append the matching ledger entry in one transaction.

        Returns None when the product does not exist or the quantity is
        already `new_quantity`.
        """
        try:
            async with self.session_factory() as session:
                product = await session.get(Product, product_id)
                if product is None:
                    return None

                before = product.stock_quantity
                change = new_quantity - before
                if change == 0:
                    return None

                product.stock_quantity = new_quantity
                entry = InventoryLog(
                    product_id=product_id,
                    type="adjustment_in" if change > 0 else "adjustment_out",
                    quantity_change=change,
                    quantity_before=before,
                    quantity_after=new_quantity,
                    reason=reason
                )
                session.add(entry)
                await session.commit()
                await session.refresh(entry)
                return entry
        except Exception as e:
            logger.error("Error setting stock", product_id=product_id, error=str(e))
            raise

    async def list_inventory_logs(self, product_id: str) -> list[InventoryLog]:
        async with self.session_factory() as session:
            stmt = (
                select(InventoryLog)
                .where(InventoryLog.product_id == product_id)
                .order_by(InventoryLog.created_at)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())
