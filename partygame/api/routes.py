"""API router aggregating all route modules."""

from fastapi import APIRouter

from partygame.api.controls import router as controls_router
from partygame.api.events import router as events_router
from partygame.api.sessions import router as sessions_router

router = APIRouter()

# Include all sub-routers
router.include_router(sessions_router, tags=["Sessions"])
router.include_router(controls_router, tags=["Controls"])
router.include_router(events_router, tags=["Events"])
