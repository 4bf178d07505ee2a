"""Institution user endpoints."""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query, status

from lexintake.api.deps import get_principal, get_services, require_global_admin
from lexintake.core.security import Principal
from lexintake.schemas.base import SuccessResponse
from lexintake.schemas.permissions import UserFeatureSettingList, UserFeaturesUpdate
from lexintake.schemas.users import (
    BackfillResult,
    PublicUser,
    UserCreateRequest,
    UserList,
    UserUpdateRequest,
)
from lexintake.services.container import ServiceContainer

logger = structlog.get_logger()
router = APIRouter()


async def _managed_institution(services: ServiceContainer, principal: Principal, user_id: int) -> int:
    """The global admin manages users of any institution; everyone else only their own"""
    if services.permissions.is_global_admin(principal.institution_id):
        return await services.users.institution_of(user_id)
    return principal.institution_id


@router.get("", response_model=UserList)
async def list_users(
    institution_id: Optional[int] = Query(default=None, alias="institutionId"),
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    """Users of the caller's institution; the global admin may list any or all"""
    if services.permissions.is_global_admin(principal.institution_id):
        if institution_id:
            users = await services.users.list_users(institution_id)
        else:
            users = await services.users.list_all_users()
    else:
        users = await services.users.list_users(principal.institution_id)
    return UserList(users=users)


@router.post("", response_model=PublicUser, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreateRequest,
    institution_id: Optional[int] = Query(default=None, alias="institutionId"),
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    await services.permissions.assert_admin(principal.institution_id, principal.legacy_user_id, principal.email)
    target = principal.institution_id
    if institution_id and services.permissions.is_global_admin(principal.institution_id):
        target = institution_id
    return await services.users.create_user(target, payload)


@router.post("/backfill-legacy", response_model=BackfillResult)
async def backfill_legacy_user_ids(
    principal: Principal = Depends(require_global_admin),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    return await services.users.backfill_legacy_user_ids()


@router.patch("/{user_id}", response_model=PublicUser)
async def update_user(
    user_id: int,
    payload: UserUpdateRequest,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    await services.permissions.assert_admin(principal.institution_id, principal.legacy_user_id, principal.email)
    institution_id = await _managed_institution(services, principal, user_id)
    return await services.users.update_user(institution_id, user_id, payload)


@router.delete("/{user_id}", response_model=SuccessResponse)
async def delete_user(
    user_id: int,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    await services.permissions.assert_admin(principal.institution_id, principal.legacy_user_id, principal.email)
    institution_id = await _managed_institution(services, principal, user_id)
    await services.users.delete_user(institution_id, user_id)
    return SuccessResponse(message="User deleted")


@router.get("/{user_id}/features", response_model=UserFeatureSettingList)
async def get_user_features(
    user_id: int,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    features = await services.permissions.get_user_feature_settings(
        principal.institution_id, principal.legacy_user_id, user_id, email=principal.email
    )
    return UserFeatureSettingList(user_id=user_id, features=features)


@router.put("/{user_id}/features", response_model=UserFeatureSettingList)
async def update_user_features(
    user_id: int,
    payload: UserFeaturesUpdate,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    features = await services.permissions.update_user_feature_settings(
        principal.institution_id,
        principal.legacy_user_id,
        user_id,
        payload.features,
        email=principal.email,
    )
    return UserFeatureSettingList(user_id=user_id, features=features)
