"""
FastAPI Dependencies
Session principal and service access
"""

from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from lexintake.core.security import InvalidSessionToken, Principal, decode_session_token
from lexintake.services.container import ServiceContainer

logger = structlog.get_logger()

# Security scheme
security = HTTPBearer(auto_error=False)


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


async def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
) -> Principal:
    """
    Authenticated caller from the session bearer token

    Raises:
        HTTPException: 401 when the token is missing or invalid
    """
    if not credentials:
        logger.warning("Missing authentication credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_session_token(credentials.credentials)
    except InvalidSessionToken as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_global_admin(
    principal: Principal = Depends(get_principal),
    services: ServiceContainer = Depends(get_services),
) -> Principal:
    if not services.permissions.is_global_admin(principal.institution_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="only the global admin can perform this action",
        )
    return principal
