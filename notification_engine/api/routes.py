from fastapi import APIRouter

from notification_engine.api.endpoints import (
    analytics,
    deliveries,
    health,
    preferences,
    schedules,
    templates,
)

api_router = APIRouter()
api_router.include_router(health.router, tags=["system"])
api_router.include_router(templates.router, tags=["templates"])
api_router.include_router(schedules.router, tags=["schedules"])
api_router.include_router(deliveries.router, tags=["deliveries"])
api_router.include_router(preferences.router, tags=["preferences"])
api_router.include_router(analytics.router, tags=["analytics"])
