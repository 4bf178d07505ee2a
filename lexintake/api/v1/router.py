"""
API v1 Router
Main router for all API v1 endpoints
"""

from fastapi import APIRouter

from lexintake.api.v1.endpoints import auth, health, permissions, users

api_router = APIRouter()

# Authentication endpoints
api_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["authentication"]
)

# Permission resolution and administration
api_router.include_router(
    permissions.router,
    prefix="/permissions",
    tags=["permissions"]
)

# Institution user management
api_router.include_router(
    users.router,
    prefix="/users",
    tags=["users"]
)

# Health checks
api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"]
)
