"""Scheduling domain schemas - Pydantic models for validation"""

import datetime as dt
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import normalize_hhmm, validate_email

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
EXCEPTION_REASONS = ("vacation", "sick", "personal", "training", "other")


# Availability


class SlotOption(BaseModel):
    time: str
    staffId: int
    staffName: str


class AvailabilityResponse(BaseModel):
    date: date
    serviceId: int
    staffId: Optional[int] = None
    slots: list[str]
    options: list[SlotOption] = []


class StaffWindow(BaseModel):
    start: str
    end: str


class StaffDayAvailability(BaseModel):
    staffId: int
    staffName: str
    workingWindow: Optional[StaffWindow] = None
    free: list[StaffWindow] = []


class DayAvailability(BaseModel):
    date: date
    available: bool
    staff: list[StaffDayAvailability]


class StaffAvailabilityResponse(BaseModel):
    startDate: date
    endDate: date
    days: list[DayAvailability]


# Holds


class HoldCreate(BaseModel):
    """Schema for provisionally claiming a slot"""

    staffId: int
    serviceId: int
    date: date
    time: str
    durationMinutes: Optional[int] = Field(default=None, gt=0, le=24 * 60)
    clientId: Optional[int] = None

    @field_validator("time")
    @classmethod
    def validate_time(cls, v):
        return normalize_hhmm(v)


class HoldResponse(BaseModel):
    id: str
    staffId: int
    serviceId: int
    date: date
    time: str
    durationMinutes: int
    expiresAt: datetime


class ConfirmRequest(BaseModel):
    """Client details collected at the end of the booking flow"""

    firstName: Optional[str] = Field(default=None, max_length=100)
    lastName: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v):
        return validate_email(v)

    def client_details(self) -> dict:
        return {
            "first_name": self.firstName,
            "last_name": self.lastName,
            "email": self.email,
            "phone": self.phone,
        }


# Appointments


class AppointmentResponse(BaseModel):
    id: int
    publicId: str
    staffId: int
    serviceId: int
    clientId: Optional[int] = None
    scheduledAt: datetime
    durationMinutes: int
    status: str
    isPaid: bool
    paidAt: Optional[datetime] = None
    notes: Optional[str] = None


class AppointmentStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        allowed = ("confirmed", "completed", "no_show", "cancelled")
        if v not in allowed:
            raise ValueError(f"Status must be one of: {', '.join(allowed)}")
        return v


# Layout


class LayoutItem(BaseModel):
    id: str
    scheduledAt: datetime
    durationMinutes: int = Field(gt=0)
    kind: str = "appointment"
    staffId: Optional[int] = None
    title: Optional[str] = None


class LayoutRequest(BaseModel):
    items: list[LayoutItem]
    maxColumns: Optional[int] = Field(default=None, ge=1, le=12)


class RenderRecordResponse(BaseModel):
    id: str
    kind: str
    staffId: Optional[int] = None
    title: Optional[str] = None
    scheduledAt: datetime
    durationMinutes: int
    column: int
    totalColumns: int
    widthPercent: float
    leftPercent: float
    overflow: bool = False


class StaffLane(BaseModel):
    staffId: int
    records: list[RenderRecordResponse]


class DayCalendarResponse(BaseModel):
    date: date
    lanes: list[StaffLane]


# Schedule administration


class DaySchedule(BaseModel):
    enabled: bool = False
    start: Optional[str] = None
    end: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def validate_time(cls, v):
        return normalize_hhmm(v)


class WeekSchedule(BaseModel):
    """Monday..Sunday working hours; a missing day means day off"""

    monday: DaySchedule = DaySchedule()
    tuesday: DaySchedule = DaySchedule()
    wednesday: DaySchedule = DaySchedule()
    thursday: DaySchedule = DaySchedule()
    friday: DaySchedule = DaySchedule()
    saturday: DaySchedule = DaySchedule()
    sunday: DaySchedule = DaySchedule()


class ScheduleExceptionCreate(BaseModel):
    date: date
    isAvailable: bool = False
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    reason: Optional[str] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_time(cls, v):
        return normalize_hhmm(v)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v):
        if v and v not in EXCEPTION_REASONS:
            raise ValueError(f"Reason must be one of: {', '.join(EXCEPTION_REASONS)}")
        return v


class ScheduleExceptionUpdate(BaseModel):
    date: Optional[dt.date] = None  # field name shadows the type once defaulted
    isAvailable: Optional[bool] = None
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    reason: Optional[str] = None

    @field_validator("startTime", "endTime")
    @classmethod
    def validate_time(cls, v):
        return normalize_hhmm(v)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v):
        if v and v not in EXCEPTION_REASONS:
            raise ValueError(f"Reason must be one of: {', '.join(EXCEPTION_REASONS)}")
        return v


class ScheduleExceptionResponse(BaseModel):
    id: int
    staffId: int
    date: date
    isAvailable: bool
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    reason: Optional[str] = None
