"""API v1 router aggregator."""

from fastapi import APIRouter

from app.api.v1 import enrollments, imports

api_router = APIRouter(tags=["API v1"])

# Include all API routers
api_router.include_router(imports.router, prefix="/imports", tags=["Imports"])
api_router.include_router(enrollments.router, prefix="/enrollments", tags=["Enrollments"])
