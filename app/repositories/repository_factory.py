"""Repository factory for dependency injection and management."""
from typing import Protocol

from app.repositories.interfaces.connection_repository import ConnectionRepository
from app.repositories.interfaces.mapping_repository import MappingRepository
from app.repositories.interfaces.product_repository import ProductRepository
from app.repositories.interfaces.sync_log_repository import SyncLogRepository
from app.repositories.sqlalchemy.connection_repository import SQLAlchemyConnectionRepository
from app.repositories.sqlalchemy.mapping_repository import SQLAlchemyMappingRepository
from app.repositories.sqlalchemy.product_repository import SQLAlchemyProductRepository
from app.repositories.sqlalchemy.sync_log_repository import SQLAlchemySyncLogRepository


class RepositoryFactory(Protocol):
    """Protocol for repository factory."""

    def create_connection_repository(self) -> ConnectionRepository:
        """Create connection repository instance."""
        ...

    def create_mapping_repository(self) -> MappingRepository:
        """Create mapping repository instance."""
        ...

    def create_product_repository(self) -> ProductRepository:
        """Create product repository instance."""
        ...

    def create_sync_log_repository(self) -> SyncLogRepository:
        """Create sync log repository instance."""
        ...


class SQLAlchemyRepositoryFactory:
    """SQLAlchemy implementation of repository factory."""

    def __init__(self, session_factory) -> None:
        """Initialize with session factory.

        Args:
        ----
            session_factory: SQLAlchemy async session factory

        """
        self.session_factory = session_factory

    def create_connection_repository(self) -> ConnectionRepository:
        return SQLAlchemyConnectionRepository(self.session_factory)

    def create_mapping_repository(self) -> MappingRepository:
        return SQLAlchemyMappingRepository(self.session_factory)

    def create_product_repository(self) -> ProductRepository:
        return SQLAlchemyProductRepository(self.session_factory)

    def create_sync_log_repository(self) -> SyncLogRepository:
        return SQLAlchemySyncLogRepository(self.session_factory)
