"""FastAPI dependency providers for the long-lived services."""
from fastapi import HTTPException, Request

from app.services.connection_registry import ConnectionRegistry
from app.services.oauth_service import OAuthService
from app.services.scheduler import SyncScheduler
from app.services.service_factory import EcommerceServices
from app.services.status_service import StatusBroadcaster
from app.services.sync_service import SyncService


def get_services(request: Request) -> EcommerceServices:
    """Get the services wired at startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Repository service not available")
    return services


def get_registry(request: Request) -> ConnectionRegistry:
    return get_services(request).registry


def get_sync_service(request: Request) -> SyncService:
    return get_services(request).sync_service


def get_oauth_service(request: Request) -> OAuthService:
    return get_services(request).oauth_service


def get_status_broadcaster(request: Request) -> StatusBroadcaster:
    return get_services(request).status


def get_scheduler(request: Request) -> SyncScheduler:
    return get_services(request).scheduler
