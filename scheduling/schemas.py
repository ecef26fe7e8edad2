import re
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

THERAPIST_CODE_PATTERN = re.compile(r'^[A-Za-z0-9_-]{2,32}$')
MAX_CANCEL_REASON_LENGTH = 500
MAX_WINDOW_HOURS = 24 * 60


def normalize_optional(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def normalize_therapist_code(value: str | None) -> str | None:
    normalized = normalize_optional(value)
    if normalized is None:
        return None
    if not THERAPIST_CODE_PATTERN.match(normalized):
        raise ValueError('Therapist codes are 2-32 letters, digits, dashes or underscores.')
    return normalized


class TimeRangeInput(BaseModel):
    start_local: str
    end_local: str
    tz: str | None = None

    class Config:
        extra = 'forbid'

    @field_validator('start_local', 'end_local')
    @classmethod
    def validate_local_time(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Local time is required.')
        return normalized

    @field_validator('tz')
    @classmethod
    def validate_tz(cls, value: str | None) -> str | None:
        return normalize_optional(value)


class AddAvailabilityRequest(BaseModel):
    therapist_code: str | None = None
    time_ranges: list[TimeRangeInput] = Field(min_length=1)
    requester_tz: str | None = None

    class Config:
        extra = 'forbid'

    @field_validator('therapist_code')
    @classmethod
    def validate_therapist_code(cls, value: str | None) -> str | None:
        return normalize_therapist_code(value)

    @field_validator('requester_tz')
    @classmethod
    def validate_requester_tz(cls, value: str | None) -> str | None:
        return normalize_optional(value)


class ListAvailabilityRequest(BaseModel):
    therapist_code: str | None = None
    window_hours: int | None = Field(default=None, ge=1, le=MAX_WINDOW_HOURS)
    limit: int | None = Field(default=None, ge=1)
    requester_tz: str | None = None

    class Config:
        extra = 'forbid'

    @field_validator('therapist_code')
    @classmethod
    def validate_therapist_code(cls, value: str | None) -> str | None:
        return normalize_therapist_code(value)

    @field_validator('requester_tz')
    @classmethod
    def validate_requester_tz(cls, value: str | None) -> str | None:
        return normalize_optional(value)


class EditAvailabilityRequest(BaseModel):
    start_local: str | None = None
    end_local: str | None = None
    tz: str | None = None
    requester_tz: str | None = None

    class Config:
        extra = 'forbid'

    @field_validator('start_local', 'end_local', 'tz', 'requester_tz')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        return normalize_optional(value)

    @model_validator(mode='after')
    def require_a_change(self) -> 'EditAvailabilityRequest':
        if self.start_local is None and self.end_local is None:
            raise ValueError('Provide start_local, end_local or both.')
        return self


class CreateBookingRequest(BaseModel):
    availability_id: UUID
    requester_tz: str | None = None

    class Config:
        extra = 'forbid'

    @field_validator('requester_tz')
    @classmethod
    def validate_requester_tz(cls, value: str | None) -> str | None:
        return normalize_optional(value)


class CancelBookingRequest(BaseModel):
    reason: str | None = None

    class Config:
        extra = 'forbid'

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        normalized = normalize_optional(value)
        if normalized and len(normalized) > MAX_CANCEL_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_CANCEL_REASON_LENGTH} characters or fewer.')
        return normalized


class RescheduleBookingRequest(BaseModel):
    new_availability_id: UUID
    requester_tz: str | None = None

    class Config:
        extra = 'forbid'

    @field_validator('requester_tz')
    @classmethod
    def validate_requester_tz(cls, value: str | None) -> str | None:
        return normalize_optional(value)


class InstantDisplay(BaseModel):
    utc: str
    local: str
    zone: str
    abbreviation: str
    offset: str


class RangeDisplay(BaseModel):
    start: InstantDisplay
    end: InstantDisplay
    label: str


class SlotDisplay(BaseModel):
    for_therapist: RangeDisplay
    for_requester: RangeDisplay


class SlotResponse(BaseModel):
    availability_id: UUID
    therapist_code: str
    start_utc: str
    end_utc: str
    booked: bool
    display: SlotDisplay


class AddedSlotResponse(SlotResponse):
    created: bool


class RejectedRangeResponse(BaseModel):
    index: int
    kind: str
    message: str
    start_local: str
    end_local: str


class AddAvailabilityResponse(BaseModel):
    therapist_code: str
    slots: list[AddedSlotResponse]
    rejected: list[RejectedRangeResponse] = []


class ListAvailabilityResponse(BaseModel):
    therapist_code: str
    window_start: str
    window_end: str
    slots: list[SlotResponse]


class BookingResponse(BaseModel):
    booking_id: UUID
    user_id: str
    therapist_code: str
    status: str
    cancel_reason: str | None = None
    slot: SlotResponse | None = None


class CancelBookingResponse(BaseModel):
    booking_id: UUID
    status: str


class RescheduleBookingResponse(BaseModel):
    booking_id: UUID
    therapist_code: str
    slot: SlotResponse
