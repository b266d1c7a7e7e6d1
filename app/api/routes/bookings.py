from datetime import date

from fastapi import APIRouter, Depends, Query, Request, Response, status

from app.schemas.auth import CurrentUserResponse
from app.schemas.booking import (
    BookingCreateRequest,
    BookingCreatedResponse,
    BookingListResponse,
    BookingUpdateRequest,
    ExtendedBooking,
    QuickBookingRequest,
    UserBookingStats,
)
from app.services.auth_service import require_current_user
from app.services.booking_events import BookingEventHub
from app.services.booking_service import BookingService

router = APIRouter(prefix="/bookings", tags=["bookings"])


def get_booking_event_hub(request: Request) -> BookingEventHub:
    return request.app.state.booking_events


@router.post("", response_model=BookingCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: BookingCreateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
    event_hub: BookingEventHub = Depends(get_booking_event_hub),
) -> BookingCreatedResponse:
    service = BookingService(event_hub=event_hub)
    return service.create_booking(payload, current_user)


@router.post("/quick", response_model=BookingCreatedResponse, status_code=status.HTTP_201_CREATED)
def create_quick_booking(
    payload: QuickBookingRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
    event_hub: BookingEventHub = Depends(get_booking_event_hub),
) -> BookingCreatedResponse:
    service = BookingService(event_hub=event_hub)
    return service.create_quick_booking(payload, current_user)


@router.get("/me", response_model=BookingListResponse)
def list_my_bookings(
    include_history: bool = Query(default=True),
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> BookingListResponse:
    service = BookingService()
    return service.get_user_bookings(current_user, include_history=include_history)


@router.get("/me/stats", response_model=UserBookingStats)
def get_my_booking_stats(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> UserBookingStats:
    service = BookingService()
    return service.get_user_booking_stats(current_user)


@router.get("/by-date", response_model=BookingListResponse)
def list_bookings_for_date(
    day: date = Query(..., alias="date"),
    _: CurrentUserResponse = Depends(require_current_user),
) -> BookingListResponse:
    service = BookingService()
    return service.get_bookings_for_date(day)


@router.get("/{booking_id}", response_model=ExtendedBooking)
def get_booking(
    booking_id: str,
    _: CurrentUserResponse = Depends(require_current_user),
) -> ExtendedBooking:
    service = BookingService()
    return service.get_booking(booking_id)


@router.patch("/{booking_id}", response_model=ExtendedBooking)
def update_booking(
    booking_id: str,
    payload: BookingUpdateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
    event_hub: BookingEventHub = Depends(get_booking_event_hub),
) -> ExtendedBooking:
    service = BookingService(event_hub=event_hub)
    return service.update_booking(booking_id, payload, current_user)


@router.post("/{booking_id}/cancel", response_model=ExtendedBooking)
def cancel_booking(
    booking_id: str,
    current_user: CurrentUserResponse = Depends(require_current_user),
    event_hub: BookingEventHub = Depends(get_booking_event_hub),
) -> ExtendedBooking:
    service = BookingService(event_hub=event_hub)
    return service.cancel_booking(booking_id, current_user)


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_booking(
    booking_id: str,
    current_user: CurrentUserResponse = Depends(require_current_user),
    event_hub: BookingEventHub = Depends(get_booking_event_hub),
) -> Response:
    service = BookingService(event_hub=event_hub)
    service.delete_booking(booking_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
