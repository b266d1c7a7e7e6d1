from fastapi import APIRouter

from app.api.routes.auth import router as auth_router
from app.api.routes.bookings import router as bookings_router
from app.api.routes.calendar import router as calendar_router
from app.api.routes.health import router as health_router
from app.api.routes.notifications import router as notifications_router
from app.api.routes.rooms import router as rooms_router

api_router = APIRouter()
v1_router = APIRouter(prefix="/v1")

api_router.include_router(health_router)

# Unversioned routes used by the current frontend.
api_router.include_router(auth_router)
api_router.include_router(rooms_router)
api_router.include_router(bookings_router)
api_router.include_router(calendar_router)
api_router.include_router(notifications_router)

# Versioned routes for long-term API evolution.
v1_router.include_router(health_router)
v1_router.include_router(auth_router)
v1_router.include_router(rooms_router)
v1_router.include_router(bookings_router)
v1_router.include_router(calendar_router)
v1_router.include_router(notifications_router)
api_router.include_router(v1_router)
