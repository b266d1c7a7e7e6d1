from datetime import date, datetime

from pydantic import BaseModel, Field

from app.schemas.booking import ExtendedBooking
from app.schemas.room import Room


class CalendarViewOptions(BaseModel):
    show_weekends: bool = False


class CalendarBooking(ExtendedBooking):
    grid_position: int
    grid_height: int
    color: str | None = None


class TimeSlotResponse(BaseModel):
    hour: int
    minute: int
    label: str


class TimeSlotsResponse(BaseModel):
    items: list[TimeSlotResponse] = Field(default_factory=list)


class CalendarTimeSlot(BaseModel):
    hour: int
    minute: int
    label: str
    date_time: datetime
    is_available: bool
    bookings: list[CalendarBooking] = Field(default_factory=list)


class CalendarDayGrid(BaseModel):
    date: date
    day_name: str
    day_number: int
    is_today: bool
    is_weekend: bool
    time_slots: list[CalendarTimeSlot] = Field(default_factory=list)


class CalendarRoom(BaseModel):
    room: Room
    days: list[CalendarDayGrid] = Field(default_factory=list)


class CalendarWeekGrid(BaseModel):
    week_start: datetime
    week_end: datetime
    rooms: list[CalendarRoom] = Field(default_factory=list)


class CalendarWeekResponse(BaseModel):
    reference_date: date
    week_label: str
    week: CalendarWeekGrid | None = None


class CalendarViewResponse(BaseModel):
    current_week: date
    view_mode: str
    show_weekends: bool
    selected_room: str | None = None
    generation: int
    loading: bool
    error: str | None = None
    week_label: str
    week: CalendarWeekGrid | None = None


class CalendarNavigationResponse(BaseModel):
    reference_date: date
    week_start: date
    week_end: date
    week_label: str
