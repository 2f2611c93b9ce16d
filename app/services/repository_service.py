"""Repository service that provides access to all repositories."""
import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.models.database import Base
from app.repositories.repository_factory import SQLAlchemyRepositoryFactory
from app.services.service_factory import ServiceFactory


logger = structlog.get_logger()


def async_database_url(url: str) -> str:
    """Select the async driver for plain database URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


class RepositoryService:
    """Service that manages database connections and provides repository access."""

    def __init__(self, database_url: str | None = None) -> None:
        database_url = database_url or settings.DATABASE_URL
        if database_url:
            url = async_database_url(database_url)
            engine_options = {"echo": False, "pool_pre_ping": True}
            if url.startswith("postgresql"):
                engine_options.update(pool_size=20, max_overflow=30, pool_recycle=3600)

            self.async_engine = create_async_engine(url, **engine_options)
            self.async_session_maker = async_sessionmaker(
                self.async_engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            self._repository_factory = SQLAlchemyRepositoryFactory(self.async_session_maker)
            self._available = True
            logger.info("Repository service initialized", url=url.split('@')[-1])
        else:
            self.async_engine = None
            self.async_session_maker = None
            self._repository_factory = None
            self._available = False
            logger.warning("DATABASE_URL not configured, repository service unavailable")

    @property
    def available(self) -> bool:
        """Check if repository service is available."""
        return self._available

    def get_repository_factory(self) -> SQLAlchemyRepositoryFactory:
        if not self._repository_factory:
            raise RuntimeError("Repository service not available")
        return self._repository_factory

    def get_service_factory(self) -> ServiceFactory:
        """Get a service factory bound to this database."""
        return ServiceFactory(self.get_repository_factory())

    async def create_tables(self) -> bool:
        """Create tables in database."""
        if not self._available:
            return False

        try:
            async with self.async_engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created")
            return True
        except Exception as e:
            logger.error("Error creating tables", error=str(e))
            return False

    async def health_check(self) -> bool:
        """Check database health."""
        if not self._available:
            return False

        try:
            async with self.async_session_maker() as session:
                await session.execute(text("SELECT 1"))
                return True
        except Exception as e:
            logger.error("Database unavailable", error=str(e))
            return False

    async def close(self) -> None:
        """Close database connections."""
        if self.async_engine:
            await self.async_engine.dispose()
        logger.info("Database connections closed")


repository_service = RepositoryService()
