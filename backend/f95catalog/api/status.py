"""Health and forum session status endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from f95catalog.capabilities import ConfigState
from f95catalog.dependencies import AppServices, get_services
from f95catalog.schemas import AuthStatusResponse, HealthResponse

router = APIRouter(prefix="/api", tags=["Status"])


@router.get("/health", response_model=HealthResponse)
def health_check(services: AppServices = Depends(get_services)):
    """Report collaborator capability states.

    The overall status is ``degraded`` when any collaborator is in an error state.
    """
    capabilities = {
        "session": services.session.capability,
        "extraction": services.extraction_provider.capability,
        "store": services.store.capability,
    }
    degraded = any(capability.state is ConfigState.ERROR for capability in capabilities.values())
    return HealthResponse(
        status="degraded" if degraded else "healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        services={name: capability.state.value for name, capability in capabilities.items()},
    )


@router.get("/auth/status", response_model=AuthStatusResponse)
def auth_status(services: AppServices = Depends(get_services)):
    """Return the forum session state."""
    report = services.session.get_status()
    return AuthStatusResponse(status=report.status.value, message=report.message, authenticated=report.authenticated)
