import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.router import api_router
from app.core.config import get_settings
from app.services.auth_service import AuthService
from app.services.booking_events import BookingEventHub
from app.services.calendar_view import CalendarViewRegistry
from app.services.notification_center import NotificationCenter


logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    _initialize_auth_defaults()
    yield
    logger.info("Releasing booking event subscriptions")
    app.state.calendar_views.close()
    app.state.notification_subscription.unsubscribe()


def create_application() -> FastAPI:
    _configure_logging()
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    booking_events = BookingEventHub()
    notification_center = NotificationCenter(
        default_duration_seconds=settings.notification_duration_seconds,
    )
    app.state.booking_events = booking_events
    app.state.notification_center = notification_center
    app.state.notification_subscription = notification_center.follow_booking_events(booking_events)
    app.state.calendar_views = CalendarViewRegistry()

    app.include_router(api_router, prefix=settings.api_prefix)

    return app


def _initialize_auth_defaults() -> None:
    logger.info("Initializing auth defaults")
    AuthService().ensure_default_admin_user()


app = create_application()
