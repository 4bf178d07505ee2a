"""
Service wiring
Builds the repository stack and the services sharing its caches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from lexintake.core.cache import Clock, TTLCache
from lexintake.core.circuit_breaker import CircuitBreaker
from lexintake.core.config import Settings
from lexintake.core.database import close_database, create_engine_from_settings, create_session_factory
from lexintake.repositories.base import PERMISSIONS_DOMAIN, PermissionsRepository
from lexintake.repositories.resilient import DomainSwitch, ResilientRepository
from lexintake.repositories.sql import SqlPermissionsRepository
from lexintake.repositories.tabular import TabularPermissionsRepository
from lexintake.services.features import FeatureService
from lexintake.services.identity import IdentityResolver
from lexintake.services.permissions import PermissionService
from lexintake.services.users import InstitutionUserService

logger = structlog.get_logger()


@dataclass
class ServiceContainer:
    repository: PermissionsRepository
    user_cache: TTLCache
    status_cache: TTLCache
    identity: IdentityResolver
    features: FeatureService
    permissions: PermissionService
    users: InstitutionUserService
    engine: Optional[AsyncEngine] = None

    async def close(self) -> None:
        await self.repository.close()
        await close_database(self.engine)


def build_services(
    repository: PermissionsRepository,
    settings: Settings,
    clock: Optional[Clock] = None,
    engine: Optional[AsyncEngine] = None,
) -> ServiceContainer:
    ttl = settings.PERMISSIONS_CACHE_TTL_SECONDS
    user_cache = TTLCache("users", default_ttl_seconds=ttl, clock=clock)
    status_cache = TTLCache("permissions_status", default_ttl_seconds=ttl, clock=clock)

    identity = IdentityResolver(repository, user_cache)
    features = FeatureService(repository, status_cache)
    permissions = PermissionService(
        repository,
        identity,
        features,
        status_cache,
        global_admin_institution_id=settings.GLOBAL_ADMIN_INSTITUTION_ID,
    )
    users = InstitutionUserService(repository, identity, status_cache)

    return ServiceContainer(
        repository=repository,
        user_cache=user_cache,
        status_cache=status_cache,
        identity=identity,
        features=features,
        permissions=permissions,
        users=users,
        engine=engine,
    )


def build_services_from_settings(settings: Settings) -> ServiceContainer:
    """Production wiring: tabular fallback always, relational primary when configured"""
    fallback = TabularPermissionsRepository.from_settings()

    engine = create_engine_from_settings()
    primary = SqlPermissionsRepository(create_session_factory(engine)) if engine is not None else None

    repository = ResilientRepository(
        primary=primary,
        fallback=fallback,
        switch=DomainSwitch.from_settings(settings),
        breaker=CircuitBreaker(
            failure_threshold=1,
            recovery_timeout=settings.PRIMARY_CIRCUIT_COOLDOWN_SECONDS,
        ),
        domain=PERMISSIONS_DOMAIN,
        timeout=settings.PRIMARY_TIMEOUT_SECONDS,
    )
    logger.info(
        "Permissions repository ready",
        primary=primary.backend_name if primary else None,
        fallback=fallback.backend_name,
        direct_db_domains=sorted(repository.switch.domains),
        use_direct_db=settings.USE_DIRECT_DB,
    )
    return build_services(repository, settings, engine=engine)
