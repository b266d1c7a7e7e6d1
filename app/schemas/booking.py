from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class BookingStatus(StrEnum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    PENDING = "pending"


class BookingRoomSummary(BaseModel):
    name: str
    capacity: int
    location: str | None = None


class BookingProfileSummary(BaseModel):
    email: str
    full_name: str | None = None


class Booking(BaseModel):
    id: str
    room_id: str
    user_id: str
    title: str | None = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: BookingStatus = BookingStatus.CONFIRMED
    created_at: datetime


class ExtendedBooking(Booking):
    room: BookingRoomSummary | None = None
    profile: BookingProfileSummary | None = None


class BookingListResponse(BaseModel):
    items: list[ExtendedBooking] = Field(default_factory=list)


class BookingCreateRequest(BaseModel):
    room_id: str
    title: str = ""
    start_date: str
    start_time: str
    end_date: str
    end_time: str
    attendee_count: int | None = None


class QuickBookingRequest(BaseModel):
    room_id: str
    duration_minutes: int = Field(ge=1, le=24 * 60)
    title: str | None = None


class BookingUpdateRequest(BaseModel):
    title: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


class BookingCreatedResponse(BaseModel):
    id: str


class UserBookingStats(BaseModel):
    total_bookings: int
    upcoming_bookings: int
    total_hours_booked: float
    favorite_room: str | None = None
