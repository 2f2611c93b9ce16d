"""SQLAlchemy implementation of sync log repository."""
import structlog
from sqlalchemy import delete, select

from app.models.database import SyncLogEntry
from app.repositories.interfaces.sync_log_repository import SyncLogRepository
from app.repositories.sqlalchemy.base_repository import SQLAlchemyBaseRepository


logger = structlog.get_logger()


class SQLAlchemySyncLogRepository(SQLAlchemyBaseRepository[SyncLogEntry], SyncLogRepository):
    """SQLAlchemy implementation of sync log repository."""

    model = SyncLogEntry

    async def list_all(self, limit: int = 100, offset: int = 0) -> list[SyncLogEntry]:
        async with self.session_factory() as session:
            stmt = select(SyncLogEntry).order_by(SyncLogEntry.started_at.desc()).limit(limit).offset(offset)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_by_connection(self, connection_id: str, limit: int = 50) -> list[SyncLogEntry]:
        async with self.session_factory() as session:
            stmt = (
                select(SyncLogEntry)
                .where(SyncLogEntry.connection_id == connection_id)
                .order_by(SyncLogEntry.started_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def delete_by_connection(self, connection_id: str) -> int:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    delete(SyncLogEntry).where(SyncLogEntry.connection_id == connection_id)
                )
                await session.commit()
                return result.rowcount or 0
        except Exception as e:
            logger.error("Error deleting sync logs", connection_id=connection_id, error=str(e))
            raise
