"""
Identity Reconciliation API - Health & Meta Router
==================================================
Health check and contact statistics endpoints.
"""

from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api import __version__
from api.deps import get_engine
from api.schemas import HealthStatus, ContactStats
from reconcile.linking.engine import ContactLinkingEngine

router = APIRouter(prefix="/api/v1", tags=["Health & Meta"])


@router.get(
    "/health",
    response_model=HealthStatus,
    responses={503: {"model": HealthStatus, "description": "Contact store unreachable"}}
)
def health_check(engine: ContactLinkingEngine = Depends(get_engine)):
    """
    Health check endpoint.

    Returns API status and contact store connectivity; 503 when the store
    does not answer.
    """
    store_healthy = engine.store.ping()

    health = HealthStatus(
        status="ok" if store_healthy else "degraded",
        store="ok" if store_healthy else "error",
        backend=engine.store.backend,
        version=__version__,
        timestamp=datetime.now(timezone.utc)
    )
    if not store_healthy:
        return JSONResponse(status_code=503, content=health.model_dump(mode='json'))
    return health


@router.get("/meta/stats", response_model=ContactStats)
def get_contact_stats(engine: ContactLinkingEngine = Depends(get_engine)):
    """
    Contact counts by precedence (soft-deleted records excluded).

    A StoreFailure reaches the shared IdentityError handler in api.main.
    """
    counts = engine.store.count_by_precedence()

    primary = counts.get('primary', 0)
    secondary = counts.get('secondary', 0)
    return ContactStats(
        total_contacts=primary + secondary,
        primary_contacts=primary,
        secondary_contacts=secondary
    )
