from fastapi import APIRouter

from directory_api.api.routes import (
    admin,
    agencies,
    claims,
    dashboard,
    dispatch,
    health,
    labor_requests,
    messages,
)

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(agencies.router, prefix="/api/agencies", tags=["public"])
api_router.include_router(dashboard.router, prefix="/api/agencies", tags=["agency"])
api_router.include_router(labor_requests.router, prefix="/api/labor-requests", tags=["public"])
api_router.include_router(claims.router, prefix="/api/claims", tags=["claims"])
api_router.include_router(messages.router, prefix="/api/messages", tags=["messages"])
api_router.include_router(admin.router, prefix="/api/admin", tags=["admin"])
api_router.include_router(dispatch.router, prefix="/api/dispatch", tags=["dispatch"])
