from datetime import UTC, date, datetime

from fastapi import APIRouter, Depends, Query, Request

from app.schemas.auth import CurrentUserResponse
from app.schemas.calendar import (
    CalendarNavigationResponse,
    CalendarViewResponse,
    CalendarWeekResponse,
    TimeSlotsResponse,
)
from app.services.auth_service import require_current_user
from app.services.calendar_grid import to_calendar_time
from app.services.calendar_service import CalendarService
from app.services.calendar_view import CalendarViewController, CalendarViewRegistry

router = APIRouter(prefix="/calendar", tags=["calendar"])


def get_calendar_view(
    request: Request,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> CalendarViewController:
    registry: CalendarViewRegistry = request.app.state.calendar_views
    service = CalendarService()
    return registry.get_or_create(
        current_user.id,
        lambda: service.view_controller(
            to_calendar_time(datetime.now(UTC), service.tz).date(),
            event_hub=request.app.state.booking_events,
        ),
    )


@router.get("/time-slots", response_model=TimeSlotsResponse)
def list_time_slots() -> TimeSlotsResponse:
    service = CalendarService()
    return service.get_time_slots()


@router.get("/week", response_model=CalendarWeekResponse)
def get_calendar_week(
    reference_date: date | None = Query(default=None),
    show_weekends: bool | None = Query(default=None),
) -> CalendarWeekResponse:
    service = CalendarService()
    return service.get_week(
        reference_date or datetime.now(UTC),
        show_weekends=show_weekends,
    )


@router.get("/navigate", response_model=CalendarNavigationResponse)
def navigate_calendar(
    reference_date: date = Query(...),
    direction: str = Query(...),
) -> CalendarNavigationResponse:
    service = CalendarService()
    return service.navigate(reference_date, direction)


@router.get("/view", response_model=CalendarViewResponse)
def get_view(view: CalendarViewController = Depends(get_calendar_view)) -> CalendarViewResponse:
    return CalendarService().describe_view(view)


@router.post("/view/navigate", response_model=CalendarViewResponse)
def navigate_view(
    direction: str = Query(...),
    view: CalendarViewController = Depends(get_calendar_view),
) -> CalendarViewResponse:
    service = CalendarService()
    service.navigate_view(view, direction)
    return service.describe_view(view)


@router.put("/view/week", response_model=CalendarViewResponse)
def set_view_week(
    reference_date: date = Query(...),
    view: CalendarViewController = Depends(get_calendar_view),
) -> CalendarViewResponse:
    view.set_current_week(reference_date)
    return CalendarService().describe_view(view)


@router.put("/view/weekends", response_model=CalendarViewResponse)
def set_view_weekends(
    show_weekends: bool = Query(...),
    view: CalendarViewController = Depends(get_calendar_view),
) -> CalendarViewResponse:
    view.set_show_weekends(show_weekends)
    return CalendarService().describe_view(view)


@router.post("/view/rooms/{room_id}/toggle", response_model=CalendarViewResponse)
def toggle_view_room(
    room_id: str,
    view: CalendarViewController = Depends(get_calendar_view),
) -> CalendarViewResponse:
    view.toggle_room(room_id)
    return CalendarService().describe_view(view)


@router.post("/view/refresh", response_model=CalendarViewResponse)
def refresh_view(view: CalendarViewController = Depends(get_calendar_view)) -> CalendarViewResponse:
    view.refresh()
    return CalendarService().describe_view(view)
