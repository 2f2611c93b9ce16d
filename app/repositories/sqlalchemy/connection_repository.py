"""SQLAlchemy implementation of connection repository."""
from datetime import datetime

import structlog
from sqlalchemy import select, update

from app.models.database import EcommerceConnection
from app.repositories.interfaces.connection_repository import ConnectionRepository
from app.repositories.sqlalchemy.base_repository import SQLAlchemyBaseRepository


logger = structlog.get_logger()


class SQLAlchemyConnectionRepository(SQLAlchemyBaseRepository[EcommerceConnection], ConnectionRepository):
    """SQLAlchemy implementation of connection repository."""

    model = EcommerceConnection

    async def list_active(self) -> list[EcommerceConnection]:
        async with self.session_factory() as session:
            stmt = (
                select(EcommerceConnection)
                .where(EcommerceConnection.is_active.is_(True))
                .order_by(EcommerceConnection.created_at)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_sync_enabled(self) -> list[EcommerceConnection]:
        async with self.session_factory() as session:
            stmt = (
                select(EcommerceConnection)
                .where(
                    EcommerceConnection.is_active.is_(True),
                    EcommerceConnection.sync_enabled.is_(True)
                )
                .order_by(EcommerceConnection.created_at)
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_sync_state(self, connection_id: str, status: str, synced_at: datetime) -> None:
        try:
            async with self.session_factory() as session:
                stmt = (
                    update(EcommerceConnection)
                    .where(EcommerceConnection.id == connection_id)
                    .values(last_sync_status=status, last_sync_at=synced_at)
                )
                await session.execute(stmt)
                await session.commit()
        except Exception as e:
            logger.error("Error updating sync state", connection_id=connection_id, error=str(e))
            raise

    async def update_tokens(
        self,
        connection_id: str,
        access_token: str,
        refresh_token: str | None,
        expires_at: datetime | None
    ) -> None:
        values = {"access_token": access_token, "token_expires_at": expires_at}
        if refresh_token:
            values["refresh_token"] = refresh_token
        # ORM path so the encrypted column type applies
        await self.update_fields(connection_id, values)
