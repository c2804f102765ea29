"""Service metadata and health endpoints.

Learn: /service-info is the GA4GH-style identity every Bento service
exposes (static, read-only). /health checks Redis and reports how many
clients are connected plus the dispatcher's counters.
"""

from fastapi import APIRouter, Request

from bento_event_relay import __version__
from bento_event_relay.config import Settings

router = APIRouter()

BENTO_SERVICE_KIND = "event-relay"
SERVICE_NAME = "Bento Event Relay"


def build_service_info(settings: Settings) -> dict:
    service_type = {
        "group": "ca.c3g.bento",
        "artifact": BENTO_SERVICE_KIND,
        "version": __version__,
    }
    return {
        "id": settings.service_id or f"{service_type['group']}:{service_type['artifact']}",
        "name": SERVICE_NAME,
        "type": service_type,
        "description": "Event relay from Redis PubSub events to WebSocket clients.",
        "organization": {
            "name": "C3G",
            "url": "https://www.computationalgenomics.ca/",
        },
        "contactUrl": "mailto:info@c3g.ca",
        "version": __version__,
        "environment": "dev" if settings.bento_environment in ("dev", "development") else "prod",
        "bento": {
            "serviceKind": BENTO_SERVICE_KIND,
            "gitRepository": "https://github.com/bento-platform/bento_event_relay",
        },
    }


@router.get("/service-info")
async def service_info(request: Request):
    """Static service identity."""
    return build_service_info(request.app.state.relay.settings)


@router.get("/health")
async def health_check(request: Request):
    """Check Redis connectivity and report relay state."""
    relay = request.app.state.relay

    checks = {
        "server": "ok",
        "version": __version__,
        "redis": await relay.redis_status(),
    }
    status = "healthy" if checks["redis"] == "ok" else "degraded"

    return {
        "status": status,
        **checks,
        "connections": len(relay.registry),
        "dispatch": relay.dispatcher.stats.as_dict(),
    }
