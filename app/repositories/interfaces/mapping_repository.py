"""Product mapping repository interface."""
from abc import abstractmethod

from app.models.database import Product, ProductMapping
from app.repositories.interfaces.base_repository import BaseRepository


class MappingRepository(BaseRepository[ProductMapping, str]):
    """Interface for local-to-remote product mappings."""

    @abstractmethod
    async def get_by_product_and_connection(
        self,
        product_id: str,
        connection_id: str
    ) -> ProductMapping | None:
        """Get the mapping for a (product, connection) pair."""
        pass

    @abstractmethod
    async def list_by_connection(self, connection_id: str) -> list[ProductMapping]:
        """Get all mappings of a connection."""
        pass

    @abstractmethod
    async def list_with_products(self, connection_id: str) -> list[tuple[ProductMapping, Product]]:
        """Get mappings of a connection joined with their local products."""
        pass

    @abstractmethod
    async def list_by_product(self, product_id: str) -> list[ProductMapping]:
        """Get all mappings of a local product."""
        pass

    @abstractmethod
    async def list_by_remote(
        self,
        platform: str,
        column: str,
        value: str,
        variant_id: str | None = None
    ) -> list[ProductMapping]:
        """Get mappings on active connections of `platform` by a remote identifier column, oldest first.

        When `variant_id` is given only mappings of that remote variant match.
        """
        pass

    @abstractmethod
    async def mapped_product_ids(self, connection_id: str) -> set[str]:
        """IDs of local products already mapped on a connection."""
        pass

    @abstractmethod
    async def delete_by_connection(self, connection_id: str) -> int:
        """Delete all mappings of a connection."""
        pass

    @abstractmethod
    async def delete_by_product(self, product_id: str) -> int:
        """Delete all mappings of a local product."""
        pass
