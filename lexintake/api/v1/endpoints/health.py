"""
Health Check Endpoints
Service liveness and backend status
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends

from lexintake import __version__
from lexintake.api.deps import get_services
from lexintake.core.database import check_database_health
from lexintake.repositories.resilient import ResilientRepository
from lexintake.schemas.base import HealthCheck, HealthStatus
from lexintake.services.container import ServiceContainer

logger = structlog.get_logger()
router = APIRouter()


@router.get("", response_model=HealthCheck)
async def health_check(services: ServiceContainer = Depends(get_services)) -> Any:
    """
    Health check endpoint

    The service stays healthy without the relational backend; an open
    circuit only degrades it because every call is served by the fallback.
    """
    checks: dict[str, Any] = {}
    overall_status = HealthStatus.HEALTHY

    repository = services.repository
    checks["repository"] = {"backend": repository.backend_name}

    if services.engine is not None:
        db_healthy = await check_database_health(services.engine)
        checks["database"] = {"status": "healthy" if db_healthy else "unhealthy"}
        if not db_healthy:
            overall_status = HealthStatus.DEGRADED
    else:
        checks["database"] = {"status": "disabled"}

    if isinstance(repository, ResilientRepository):
        state = await repository.breaker.get_state(repository.domain)
        checks["primary_circuit"] = {"domain": repository.domain, "state": state.value}
        if state.value != "closed" and overall_status == HealthStatus.HEALTHY:
            overall_status = HealthStatus.DEGRADED

    checks["cache"] = {"users": len(services.user_cache), "status": len(services.status_cache)}

    return HealthCheck(
        status=overall_status,
        service="lexintake-permissions",
        version=__version__,
        checks=checks,
    )
