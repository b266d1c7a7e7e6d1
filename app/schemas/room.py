from datetime import datetime

from pydantic import BaseModel, Field


class Room(BaseModel):
    id: str
    name: str
    capacity: int
    description: str | None = None
    location: str | None = None
    equipment: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    image_url: str | None = None
    floor: int | None = None
    is_active: bool = True
    created_at: datetime


class RoomWithAvailability(Room):
    is_currently_available: bool


class RoomListResponse(BaseModel):
    items: list[RoomWithAvailability | Room] = Field(default_factory=list)


class RoomCreateRequest(BaseModel):
    name: str
    capacity: int = Field(ge=1)
    description: str | None = None
    location: str | None = None
    equipment: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    image_url: str | None = None
    floor: int | None = None
    is_active: bool = True


class RoomFilters(BaseModel):
    search: str | None = None
    capacity_min: int | None = None
    capacity_max: int | None = None
    equipment: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    location: str | None = None
    floor: int | None = None


class RoomAvailabilitySlot(BaseModel):
    hour_slot: int
    is_available: bool
    booking_id: str | None = None
    booking_title: str | None = None


class RoomAvailabilityResponse(BaseModel):
    room_id: str
    date: str
    slots: list[RoomAvailabilitySlot] = Field(default_factory=list)


class RoomUtilization(BaseModel):
    total_hours: float
    booked_hours: float
    utilization_percentage: float


class NextAvailableSlot(BaseModel):
    next_available_time: datetime
    next_available_end: datetime


class NextAvailableSlotResponse(BaseModel):
    slot: NextAvailableSlot | None = None


class RoomAvailabilityCheckResponse(BaseModel):
    room_id: str
    is_available: bool


class RoomFacetResponse(BaseModel):
    items: list[str] = Field(default_factory=list)


class RoomCapacityRange(BaseModel):
    min: int
    max: int
