"""Local product store interface."""
from abc import abstractmethod

from app.models.database import InventoryLog, Product
from app.repositories.interfaces.base_repository import BaseRepository


class ProductRepository(BaseRepository[Product, str]):
    """Interface for the local POS product store and its stock ledger."""

    @abstractmethod
    async def list_with_sku(self) -> list[Product]:
        """Get active products that carry a SKU."""
        pass

    @abstractmethod
    async def list_unmapped(self, connection_id: str) -> list[Product]:
        """Get active products without a mapping on a connection."""
        pass

    @abstractmethod
    async def get_stock_levels(self, product_ids: list[str]) -> dict[str, int]:
        """Current stock quantity per product."""
        pass

    @abstractmethod
    async def set_stock(self, product_id: str, new_quantity: int, reason: str) -> InventoryLog | None:
        """Set the stock quantity and record one inventory adjustment."""
        pass

    @abstractmethod
    async def list_inventory_logs(self, product_id: str) -> list[InventoryLog]:
        """Get stock adjustments of a product, oldest first."""
        pass
