"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from dealnet.api.track import router as track_router
from dealnet.api.partners import router as partners_router
from dealnet.api.admin import router as admin_router
from dealnet.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(track_router)
api_router.include_router(partners_router)
api_router.include_router(admin_router)
api_router.include_router(health_router)
