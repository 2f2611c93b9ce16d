"""Shared SQLAlchemy CRUD operations."""
from typing import Any, Generic, TypeVar

import structlog
from sqlalchemy import select

from app.models.database import Base


logger = structlog.get_logger()

ModelType = TypeVar("ModelType", bound=Base)


class SQLAlchemyBaseRepository(Generic[ModelType]):
    """CRUD operations over one mapped model, one session per call."""

    model: type[ModelType]

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def create(self, entity: ModelType) -> ModelType:
        """Insert a new entity."""
        try:
            async with self.session_factory() as session:
                session.add(entity)
                await session.commit()
                await session.refresh(entity)
                return entity
        except Exception as e:
            logger.error("Error creating entity", model=self.model.__name__, error=str(e))
            raise

    async def get_by_id(self, entity_id: str) -> ModelType | None:
        async with self.session_factory() as session:
            return await session.get(self.model, entity_id)

    async def update_fields(self, entity_id: str, values: dict[str, Any]) -> ModelType | None:
        """Set column values on an entity and return the refreshed row."""
        try:
            async with self.session_factory() as session:
                entity = await session.get(self.model, entity_id)
                if entity is None:
                    return None
                for key, value in values.items():
                    setattr(entity, key, value)
                await session.commit()
                await session.refresh(entity)
                return entity
        except Exception as e:
            logger.error("Error updating entity", model=self.model.__name__, entity_id=entity_id, error=str(e))
            raise

    async def delete(self, entity_id: str) -> bool:
        try:
            async with self.session_factory() as session:
                entity = await session.get(self.model, entity_id)
                if entity is None:
                    return False
                await session.delete(entity)
                await session.commit()
                return True
        except Exception as e:
            logger.error("Error deleting entity", model=self.model.__name__, entity_id=entity_id, error=str(e))
            raise

    async def list_all(self, limit: int = 100, offset: int = 0) -> list[ModelType]:
        async with self.session_factory() as session:
            stmt = select(self.model).order_by(self.model.created_at).limit(limit).offset(offset)
            result = await session.execute(stmt)
            return list(result.scalars().all())
