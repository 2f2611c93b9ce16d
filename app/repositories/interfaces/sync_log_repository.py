"""Sync log repository interface."""
from abc import abstractmethod

from app.models.database import SyncLogEntry
from app.repositories.interfaces.base_repository import BaseRepository


class SyncLogRepository(BaseRepository[SyncLogEntry, str]):
    """Interface for the append-only sync audit log."""

    @abstractmethod
    async def list_by_connection(self, connection_id: str, limit: int = 50) -> list[SyncLogEntry]:
        """Get the most recent log entries of a connection."""
        pass

    @abstractmethod
    async def delete_by_connection(self, connection_id: str) -> int:
        """Delete all log entries of a connection."""
        pass
