"""FastAPI application for the inventory sync service."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import ecommerce, health
from app.core.config import settings
from app.core.logging import configure_logging
from app.services.metrics_service import metrics_service
from app.services.repository_service import repository_service


logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle."""
    configure_logging()
    logger.info("Starting inventory sync service", version=settings.VERSION)

    services = None
    if repository_service.available:
        await repository_service.create_tables()
        logger.info("Database tables initialized")

        services = repository_service.get_service_factory().create_ecommerce_services()
        app.state.services = services
        await services.registry.load_connections()
        if settings.SYNC_SCHEDULER_ENABLED:
            services.scheduler.start(settings.SYNC_INTERVAL_MINUTES)
    else:
        logger.warning("Repository service not available - sync endpoints disabled")

    yield

    logger.info("Stopping inventory sync service")
    if services is not None:
        await services.aclose()
    if repository_service.available:
        await repository_service.close()


app = FastAPI(
    title=settings.APP_NAME,
    description="Keeps local stock levels in step with connected storefronts",
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(ecommerce.router, prefix=f"{settings.API_V1_STR}/ecommerce", tags=["ecommerce"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": f"{settings.APP_NAME} API",
        "version": settings.VERSION,
        "status": "running"
    }


@app.get("/metrics")
async def prometheus_metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(
        content=metrics_service.get_prometheus_metrics(),
        media_type=metrics_service.get_content_type()
    )
