"""Connection repository interface."""
from abc import abstractmethod
from datetime import datetime

from app.models.database import EcommerceConnection
from app.repositories.interfaces.base_repository import BaseRepository


class ConnectionRepository(BaseRepository[EcommerceConnection, str]):
    """Interface for storefront connection records."""

    @abstractmethod
    async def list_active(self) -> list[EcommerceConnection]:
        """Get all active connections."""
        pass

    @abstractmethod
    async def list_sync_enabled(self) -> list[EcommerceConnection]:
        """Get active connections with sync enabled."""
        pass

    @abstractmethod
    async def update_sync_state(
        self,
        connection_id: str,
        status: str,
        synced_at: datetime
    ) -> None:
        """Record the outcome and time of the latest sync pass."""
        pass

    @abstractmethod
    async def update_tokens(
        self,
        connection_id: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None
    ) -> None:
        """Persist refreshed OAuth tokens."""
        pass
