"""
Authentication Endpoints
Password login against the users table and upstream user sync
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status

from lexintake.api.deps import get_principal, get_services
from lexintake.core.exceptions import Unauthorized
from lexintake.core.security import Principal, create_session_token
from lexintake.schemas.auth import LoginRequest, SyncUserRequest, TokenResponse
from lexintake.schemas.users import UserSyncRequest, UserSyncResult
from lexintake.services.container import ServiceContainer

logger = structlog.get_logger()
router = APIRouter()


@router.post("/login", response_model=TokenResponse)
async def login(
    payload: LoginRequest,
    services: ServiceContainer = Depends(get_services),
) -> Any:
    user = await services.users.authenticate(payload.email, payload.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = create_session_token(user.institution_id, user.legacy_user_id, email=user.email)
    logger.info("User logged in", institution_id=user.institution_id, user_id=user.user_id)
    return TokenResponse(
        access_token=token,
        institution_id=user.institution_id,
        user_id=user.user_id,
        legacy_user_id=user.legacy_user_id,
    )


@router.post("/sync-user", response_model=UserSyncResult)
async def sync_user(
    payload: SyncUserRequest,
    response: Response,
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Any:
    """Create or refresh a user record on behalf of the upstream login flow"""
    institution_id = payload.institution_id or principal.institution_id
    if institution_id != principal.institution_id and not services.permissions.is_global_admin(
        principal.institution_id
    ):
        raise Unauthorized("no permission for this institution")

    data = UserSyncRequest.model_validate(payload.model_dump(exclude={"institution_id"}))
    result = await services.users.sync_user(institution_id, data)
    response.status_code = status.HTTP_201_CREATED if result.created else status.HTTP_200_OK
    return result
