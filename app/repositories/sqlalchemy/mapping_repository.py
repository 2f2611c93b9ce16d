"""SQLAlchemy implementation of product mapping repository."""
import structlog
from sqlalchemy import delete, select

from app.models.database import EcommerceConnection, Product, ProductMapping
from app.repositories.interfaces.mapping_repository import MappingRepository
from app.repositories.sqlalchemy.base_repository import SQLAlchemyBaseRepository


logger = structlog.get_logger()


class SQLAlchemyMappingRepository(SQLAlchemyBaseRepository[ProductMapping], MappingRepository):
    """SQLAlchemy implementation of product mapping repository."""

    model = ProductMapping

    async def get_by_product_and_connection(self, product_id: str, connection_id: str) -> ProductMapping | None:
        async with self.session_factory() as session:
            stmt = select(ProductMapping).where(
                ProductMapping.product_id == product_id,
                ProductMapping.connection_id == connection_id
            )
            result = await session.execute(stmt)
            return result.scalars().first()

    async def list_by_connection(self, connection_id: str) -> list[ProductMapping]:
        async with self.session_factory() as session:
            stmt = (
                select(ProductMapping)
                .where(ProductMapping.connection_id == connection_id)
                .order_by(ProductMapping.created_at)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_with_products(self, connection_id: str) -> list[tuple[ProductMapping, Product]]:
        async with self.session_factory() as session:
            stmt = (
                select(ProductMapping, Product)
                .join(Product, ProductMapping.product_id == Product.id)
                .where(ProductMapping.connection_id == connection_id)
                .order_by(Product.name)
            )
            result = await session.execute(stmt)
            return [(mapping, product) for mapping, product in result.all()]

    async def list_by_product(self, product_id: str) -> list[ProductMapping]:
        async with self.session_factory() as session:
            stmt = select(ProductMapping).where(ProductMapping.product_id == product_id)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_by_remote(
        self,
        platform: str,
        column: str,
        value: str,
        variant_id: str | None = None
    ) -> list[ProductMapping]:
        async with self.session_factory() as session:
            stmt = (
                select(ProductMapping)
                .join(EcommerceConnection, ProductMapping.connection_id == EcommerceConnection.id)
                .where(
                    EcommerceConnection.platform == platform,
                    EcommerceConnection.is_active.is_(True),
                    getattr(ProductMapping, column) == value
                )
                .order_by(ProductMapping.created_at)
            )
            if variant_id is not None:
                stmt = stmt.where(ProductMapping.remote_variant_id == variant_id)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def mapped_product_ids(self, connection_id: str) -> set[str]:
        async with self.session_factory() as session:
            stmt = select(ProductMapping.product_id).where(ProductMapping.connection_id == connection_id)
            result = await session.execute(stmt)
            return set(result.scalars().all())

    async def delete_by_connection(self, connection_id: str) -> int:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(ProductMapping).where(ProductMapping.connection_id == connection_id)
                )
                await session.commit()
                return result.rowcount or 0
        except Exception as e:
            logger.error("Error deleting mappings", connection_id=connection_id, error=str(e))
            raise

    async def delete_by_product(self, product_id: str) -> int:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(ProductMapping).where(ProductMapping.product_id == product_id)
                )
                await session.commit()
                return result.rowcount or 0
        except Exception as e:
            logger.error("Error deleting mappings", product_id=product_id, error=str(e))
            raise
