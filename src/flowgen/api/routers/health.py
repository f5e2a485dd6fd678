"""Health check endpoints."""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from flowgen.api.dependencies import get_app_settings, get_container
from flowgen.domain.exceptions import BrokerUnavailableError
from flowgen.infrastructure.config import Settings
from flowgen.infrastructure.container import ServiceContainer

router = APIRouter()


@router.get("/health")
async def health_check(settings: Settings = Depends(get_app_settings)):
    """Basic health check."""
    return {
        "status": "healthy",
        "service": settings.app.name,
        "version": settings.app.version,
    }


@router.get("/health/dependencies")
async def dependencies_health(container: ServiceContainer = Depends(get_container)):
    """Check the document store and the broker."""
    checks = {}

    if container.store is not None:
        checks["mongodb"] = (
            "connected" if await container.store.is_healthy() else "disconnected"
        )

    try:
        await container.broker.declare_queue(container.settings.queues.generate)
        checks["broker"] = "connected"
    except BrokerUnavailableError:
        checks["broker"] = "disconnected"

    pending: dict = {}
    for dispatcher in container.dispatchers:
        pending[dispatcher.queue_name] = (
            pending.get(dispatcher.queue_name, 0) + len(dispatcher.registry)
        )

    healthy = all(value == "connected" for value in checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "checks": checks,
            "listeners": {
                listener.queue_name: listener.running for listener in container.listeners
            },
            "pending_replies": pending,
            "sse_subscribers": len(container.hub),
        },
    )
