"""
Permission Endpoints
Status resolution, administration overview and sysadmin mutations
"""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query

from lexintake.api.deps import get_principal, get_services
from lexintake.core.security import Principal
from lexintake.schemas.base import SuccessResponse
from lexintake.schemas.permissions import (
    InstitutionFeatureList,
    InstitutionFeaturesUpdate,
    InstitutionList,
    PermissionsOverview,
    PermissionsStatus,
    RolePermissionsUpdate,
    UserRolesUpdate,
)
from lexintake.services.container import ServiceContainer

logger = structlog.get_logger()
router = APIRouter()


@router.get("/status", response_model=PermissionsStatus)
async def get_permissions_status(
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    """Pages and actions the caller may use right now"""
    return await services.permissions.resolve_status(
        principal.institution_id, principal.legacy_user_id, principal.email
    )


@router.get("/overview", response_model=PermissionsOverview)
async def get_permissions_overview(
    target_institution_id: Optional[int] = Query(default=None, alias="targetInstitutionId"),
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    return await services.permissions.get_overview(
        principal.institution_id,
        principal.legacy_user_id,
        target_institution_id,
        email=principal.email,
    )


@router.put("/roles/{role_id}/permissions", response_model=SuccessResponse)
async def update_role_permissions(
    role_id: int,
    payload: RolePermissionsUpdate,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    result = await services.permissions.update_role_permissions(
        principal.institution_id,
        principal.legacy_user_id,
        role_id,
        payload.permission_ids,
        payload.target_institution_id,
        email=principal.email,
    )
    return SuccessResponse(message="Role permissions updated", data=result)


@router.put("/users/{user_id}/roles", response_model=SuccessResponse)
async def update_user_roles(
    user_id: int,
    payload: UserRolesUpdate,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    result = await services.permissions.update_user_roles(
        principal.institution_id,
        principal.legacy_user_id,
        user_id,
        payload.role_ids,
        payload.target_institution_id,
        email=principal.email,
    )
    return SuccessResponse(message="User roles updated", data=result)


@router.get("/features", response_model=InstitutionFeatureList)
async def get_institution_features(
    institution_id: Optional[int] = Query(default=None, alias="institutionId"),
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    features = await services.permissions.list_institution_features(principal.institution_id, institution_id)
    return InstitutionFeatureList(features=features)


@router.put("/features", response_model=SuccessResponse)
async def update_institution_features(
    payload: InstitutionFeaturesUpdate,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    changed = await services.permissions.update_institution_features(
        principal.institution_id,
        principal.legacy_user_id,
        payload.target_institution_id,
        payload.features,
        email=principal.email,
    )
    return SuccessResponse(message="Institution features updated", data={"changed": changed})


@router.get("/institutions", response_model=InstitutionList)
async def list_institutions(
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    """Directory of institutions for the global admin's institution picker"""
    institutions = await services.permissions.list_institutions(principal.institution_id)
    return InstitutionList(institutions=institutions)
