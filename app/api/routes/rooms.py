from datetime import UTC, date, datetime

from fastapi import APIRouter, Depends, Query, status

from app.schemas.auth import CurrentUserResponse
from app.schemas.booking import BookingListResponse
from app.schemas.room import (
    NextAvailableSlotResponse,
    Room,
    RoomAvailabilityCheckResponse,
    RoomAvailabilityResponse,
    RoomCapacityRange,
    RoomCreateRequest,
    RoomFacetResponse,
    RoomFilters,
    RoomListResponse,
    RoomUtilization,
)
from app.services.auth_service import require_admin_user
from app.services.booking_service import BookingService
from app.services.room_service import RoomService

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.get("", response_model=RoomListResponse)
def list_rooms(
    search: str | None = Query(default=None),
    capacity_min: int | None = Query(default=None, ge=1),
    capacity_max: int | None = Query(default=None, ge=1),
    location: str | None = Query(default=None),
    floor: int | None = Query(default=None),
    equipment: list[str] | None = Query(default=None),
    features: list[str] | None = Query(default=None),
    include_availability: bool = Query(default=False),
) -> RoomListResponse:
    filters = RoomFilters(
        search=search,
        capacity_min=capacity_min,
        capacity_max=capacity_max,
        location=location,
        floor=floor,
        equipment=equipment or [],
        features=features or [],
    )
    service = RoomService()
    return service.list_rooms(filters, include_availability=include_availability)


@router.post("", response_model=Room, status_code=status.HTTP_201_CREATED)
def create_room(
    payload: RoomCreateRequest,
    _: CurrentUserResponse = Depends(require_admin_user),
) -> Room:
    service = RoomService()
    return service.create_room(payload)


@router.get("/locations", response_model=RoomFacetResponse)
def list_room_locations() -> RoomFacetResponse:
    service = RoomService()
    return service.list_locations()


@router.get("/equipment", response_model=RoomFacetResponse)
def list_room_equipment() -> RoomFacetResponse:
    service = RoomService()
    return service.list_equipment()


@router.get("/features", response_model=RoomFacetResponse)
def list_room_features() -> RoomFacetResponse:
    service = RoomService()
    return service.list_features()


@router.get("/capacity-range", response_model=RoomCapacityRange)
def get_room_capacity_range() -> RoomCapacityRange:
    service = RoomService()
    return service.get_capacity_range()


@router.get("/{room_id}", response_model=Room)
def get_room(room_id: str) -> Room:
    service = RoomService()
    return service.get_room(room_id)


@router.get("/{room_id}/bookings", response_model=BookingListResponse)
def list_room_bookings(
    room_id: str,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    include_user_info: bool = Query(default=False),
) -> BookingListResponse:
    RoomService().get_room(room_id)
    service = BookingService()
    return service.get_room_bookings(
        room_id,
        start_date=start_date,
        end_date=end_date,
        include_user_info=include_user_info,
    )


@router.get("/{room_id}/availability", response_model=RoomAvailabilityResponse)
def get_room_availability(
    room_id: str,
    day: date = Query(..., alias="date"),
) -> RoomAvailabilityResponse:
    service = RoomService()
    return service.get_room_availability(room_id, day)


@router.get("/{room_id}/utilization", response_model=RoomUtilization)
def get_room_utilization(
    room_id: str,
    start_date: date = Query(...),
    end_date: date = Query(...),
) -> RoomUtilization:
    service = RoomService()
    return service.get_room_utilization(room_id, start_date, end_date)


@router.get("/{room_id}/next-available", response_model=NextAvailableSlotResponse)
def get_next_available_slot(
    room_id: str,
    from_time: datetime | None = Query(default=None),
    duration_minutes: int = Query(default=60, ge=1),
) -> NextAvailableSlotResponse:
    service = RoomService()
    slot = service.get_next_available_slot(
        room_id,
        from_time or datetime.now(UTC),
        duration_minutes,
    )
    return NextAvailableSlotResponse(slot=slot)


@router.get("/{room_id}/check", response_model=RoomAvailabilityCheckResponse)
def check_room_available_at(
    room_id: str,
    start_time: datetime = Query(...),
    end_time: datetime = Query(...),
) -> RoomAvailabilityCheckResponse:
    service = RoomService()
    room = service.get_room(room_id)
    return RoomAvailabilityCheckResponse(
        room_id=room.id,
        is_available=service.check_available_at(room.id, start_time, end_time),
    )
