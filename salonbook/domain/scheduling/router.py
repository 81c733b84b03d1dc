"""Booking router - FastAPI endpoints for availability, holds and calendars"""

import logging
from datetime import date, datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ...auth import get_admin_tenant, get_owner_token, get_tenant, require_owner_token
from ...cache import Cache, cache
from ...config import LAYOUT_MAX_COLUMNS
from ...database import get_db
from ...models import Appointment, ReservationHold, ScheduleException, Tenant
from .appointment_service import AppointmentService
from .availability_service import AvailabilityService
from .hold_service import HoldService
from .layout import CalendarItem, RenderRecord, calculate_positions
from .notifications import ChangeNotificationBridge, bridge
from .schedule_service import ScheduleService
from .schemas import (
    AppointmentResponse,
    AppointmentStatusUpdate,
    AvailabilityResponse,
    ConfirmRequest,
    DayAvailability,
    DayCalendarResponse,
    HoldCreate,
    HoldResponse,
    LayoutRequest,
    RenderRecordResponse,
    ScheduleExceptionCreate,
    ScheduleExceptionResponse,
    ScheduleExceptionUpdate,
    SlotOption,
    StaffAvailabilityResponse,
    StaffDayAvailability,
    StaffLane,
    StaffWindow,
    WeekSchedule,
)
from .time_calculator import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/booking", tags=["Booking"])


# ============================================================================
# DEPENDENCIES
# ============================================================================


def get_bridge() -> ChangeNotificationBridge:
    return bridge


def get_cache() -> Cache:
    return cache


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_availability_service(
    db: Session = Depends(get_db),
    availability_cache: Cache = Depends(get_cache),
    change_bridge: ChangeNotificationBridge = Depends(get_bridge),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AvailabilityService:
    return AvailabilityService(db, cache=availability_cache, bridge=change_bridge, clock=clock)


def get_hold_service(
    db: Session = Depends(get_db),
    change_bridge: ChangeNotificationBridge = Depends(get_bridge),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> HoldService:
    return HoldService(db, bridge=change_bridge, clock=clock)


def get_appointment_service(
    db: Session = Depends(get_db),
    change_bridge: ChangeNotificationBridge = Depends(get_bridge),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AppointmentService:
    return AppointmentService(db, bridge=change_bridge, clock=clock)


def get_schedule_service(
    db: Session = Depends(get_db),
    change_bridge: ChangeNotificationBridge = Depends(get_bridge),
) -> ScheduleService:
    return ScheduleService(db, bridge=change_bridge)


# ============================================================================
# RESPONSE MAPPING
# ============================================================================


def _hold_response(hold: ReservationHold) -> HoldResponse:
    return HoldResponse(
        id=hold.id,
        staffId=hold.staff_id,
        serviceId=hold.service_id,
        date=hold.slot_date,
        time=hold.slot_time,
        durationMinutes=hold.duration_minutes,
        expiresAt=hold.expires_at,
    )


def _appointment_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        publicId=appointment.public_id,
        staffId=appointment.staff_id,
        serviceId=appointment.service_id,
        clientId=appointment.client_id,
        scheduledAt=appointment.scheduled_at,
        durationMinutes=appointment.duration_minutes,
        status=appointment.status,
        isPaid=appointment.is_paid,
        paidAt=appointment.paid_at,
        notes=appointment.notes,
    )


def _exception_response(exception: ScheduleException) -> ScheduleExceptionResponse:
    return ScheduleExceptionResponse(
        id=exception.id,
        staffId=exception.staff_id,
        date=exception.date,
        isAvailable=exception.is_available,
        startTime=exception.start_time,
        endTime=exception.end_time,
        reason=exception.reason,
    )


def _render_record_response(record: RenderRecord) -> RenderRecordResponse:
    item = record.item
    return RenderRecordResponse(
        id=str(item.id),
        kind=item.kind,
        staffId=item.staff_id,
        title=item.title,
        scheduledAt=item.scheduled_at,
        durationMinutes=item.duration_minutes,
        column=record.column,
        totalColumns=record.total_columns,
        widthPercent=record.width_percent,
        leftPercent=record.left_percent,
        overflow=record.overflow,
    )


# ============================================================================
# PUBLIC BOOKING FLOW
# ============================================================================


@router.get("/{tenant}/availability", response_model=AvailabilityResponse)
def get_availability(
    target_date: date = Query(..., alias="date"),
    service_id: int = Query(...),
    staff_id: Optional[int] = Query(None),
    tenant: Tenant = Depends(get_tenant),
    owner_token: Optional[str] = Depends(get_owner_token),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Bookable start times for a service on one date"""
    options = service.get_slot_options(tenant.id, target_date, service_id, staff_id, owner_token)
    return AvailabilityResponse(
        date=target_date,
        serviceId=service_id,
        staffId=staff_id,
        slots=sorted({option["time"] for option in options}),
        options=[
            SlotOption(time=o["time"], staffId=o["staff_id"], staffName=o["staff_name"]) for o in options
        ],
    )


@router.get("/{tenant}/staff-availability", response_model=StaffAvailabilityResponse)
def get_staff_availability(
    start_date: date = Query(...),
    end_date: date = Query(...),
    staff_id: Optional[int] = Query(None),
    service_id: Optional[int] = Query(None),
    tenant: Tenant = Depends(get_tenant),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Working windows and free time per staff member across a date range"""
    days = service.get_staff_availability(tenant.id, start_date, end_date, staff_id, service_id)
    return StaffAvailabilityResponse(
        startDate=start_date,
        endDate=end_date,
        days=[
            DayAvailability(
                date=date.fromisoformat(day_key),
                available=day["available"],
                staff=[
                    StaffDayAvailability(
                        staffId=entry["staff_id"],
                        staffName=entry["staff_name"],
                        workingWindow=StaffWindow(**entry["window"]) if entry["window"] else None,
                        free=[StaffWindow(**piece) for piece in entry["free"]],
                    )
                    for entry in day["staff"]
                ],
            )
            for day_key, day in days.items()
        ],
    )


@router.post("/{tenant}/holds", response_model=HoldResponse, status_code=201)
def create_hold(
    data: HoldCreate,
    tenant: Tenant = Depends(get_tenant),
    owner_token: str = Depends(require_owner_token),
    service: HoldService = Depends(get_hold_service),
):
    """Provisionally claim a slot while the guest completes the booking"""
    hold = service.create_hold(
        tenant.id,
        data.staffId,
        data.serviceId,
        data.date,
        data.time,
        owner_token,
        duration_minutes=data.durationMinutes,
        client_id=data.clientId,
    )
    return _hold_response(hold)


@router.delete("/holds/{hold_id}", status_code=204)
def release_hold(hold_id: str, service: HoldService = Depends(get_hold_service)):
    """Release a hold. Unknown or already-resolved holds are a no-op."""
    service.release_hold(hold_id)
    return Response(status_code=204)


@router.post("/holds/{hold_id}/confirm", response_model=AppointmentResponse, status_code=201)
def confirm_hold(
    hold_id: str,
    data: ConfirmRequest,
    owner_token: Optional[str] = Depends(get_owner_token),
    service: HoldService = Depends(get_hold_service),
):
    """Convert a live hold into a confirmed appointment"""
    appointment = service.confirm_hold(
        hold_id, data.client_details(), owner_token=owner_token, notes=data.notes
    )
    return _appointment_response(appointment)


# ============================================================================
# CALENDAR VIEWS
# ============================================================================


@router.post("/layout", response_model=list[RenderRecordResponse])
def layout_records(data: LayoutRequest):
    """Column layout for overlapping calendar items (no storage access)"""
    items = [
        CalendarItem(
            id=item.id,
            scheduled_at=item.scheduledAt,
            duration_minutes=item.durationMinutes,
            kind=item.kind,
            staff_id=item.staffId,
            title=item.title,
        )
        for item in data.items
    ]
    records = calculate_positions(items, data.maxColumns or LAYOUT_MAX_COLUMNS)
    return [_render_record_response(record) for record in records]


@router.get("/{tenant}/calendar", response_model=DayCalendarResponse)
def get_day_calendar(
    target_date: date = Query(..., alias="date"),
    staff_id: Optional[int] = Query(None),
    tenant: Tenant = Depends(get_tenant),
    service: AppointmentService = Depends(get_appointment_service),
):
    lanes = service.build_day_calendar(tenant.id, target_date, staff_id)
    return DayCalendarResponse(
        date=target_date,
        lanes=[
            StaffLane(staffId=sid, records=[_render_record_response(r) for r in records])
            for sid, records in lanes.items()
        ],
    )


@router.get("/{tenant}/events")
def stream_changes(
    target_date: Optional[date] = Query(None, alias="date"),
    tenant: Tenant = Depends(get_tenant),
    change_bridge: ChangeNotificationBridge = Depends(get_bridge),
):
    """
    Server-Sent Events relay of change signals.

    Each event means "availability changed, refetch"; idle periods send
    comment keep-alives.
    """

    def event_stream():
        yield "retry: 5000\n\n"
        for signal in change_bridge.listen(tenant.id, target_date):
            if signal is None:
                yield ": keep-alive\n\n"
                continue
            yield f"event: {signal.event}\ndata: {signal.to_json()}\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ============================================================================
# SALON ADMINISTRATION
# ============================================================================


@router.get("/{tenant}/staff/{staff_id}/schedule", response_model=WeekSchedule)
def get_week_schedule(
    staff_id: int,
    tenant: Tenant = Depends(get_admin_tenant),
    service: ScheduleService = Depends(get_schedule_service),
):
    return service.get_week_schedule(tenant.id, staff_id)


@router.put("/{tenant}/staff/{staff_id}/schedule", response_model=WeekSchedule)
def update_week_schedule(
    staff_id: int,
    data: WeekSchedule,
    tenant: Tenant = Depends(get_admin_tenant),
    service: ScheduleService = Depends(get_schedule_service),
):
    return service.update_week_schedule(tenant.id, staff_id, data)


@router.get("/{tenant}/staff/{staff_id}/exceptions", response_model=list[ScheduleExceptionResponse])
def list_schedule_exceptions(
    staff_id: int,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    tenant: Tenant = Depends(get_admin_tenant),
    service: ScheduleService = Depends(get_schedule_service),
):
    exceptions = service.list_exceptions(tenant.id, staff_id, start_date, end_date)
    return [_exception_response(exception) for exception in exceptions]


@router.post(
    "/{tenant}/staff/{staff_id}/exceptions",
    response_model=ScheduleExceptionResponse,
    status_code=201,
)
def create_schedule_exception(
    staff_id: int,
    data: ScheduleExceptionCreate,
    tenant: Tenant = Depends(get_admin_tenant),
    service: ScheduleService = Depends(get_schedule_service),
):
    return _exception_response(service.create_exception(tenant.id, staff_id, data))


@router.patch("/{tenant}/exceptions/{exception_id}", response_model=ScheduleExceptionResponse)
def update_schedule_exception(
    exception_id: int,
    data: ScheduleExceptionUpdate,
    tenant: Tenant = Depends(get_admin_tenant),
    service: ScheduleService = Depends(get_schedule_service),
):
    return _exception_response(service.update_exception(tenant.id, exception_id, data))


@router.delete("/{tenant}/exceptions/{exception_id}", status_code=204)
def delete_schedule_exception(
    exception_id: int,
    tenant: Tenant = Depends(get_admin_tenant),
    service: ScheduleService = Depends(get_schedule_service),
):
    service.delete_exception(tenant.id, exception_id)
    return Response(status_code=204)


@router.patch("/{tenant}/appointments/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: AppointmentStatusUpdate,
    tenant: Tenant = Depends(get_admin_tenant),
    service: AppointmentService = Depends(get_appointment_service),
):
    return _appointment_response(service.update_status(tenant.id, appointment_id, data.status))


@router.post("/{tenant}/appointments/{appointment_id}/paid", response_model=AppointmentResponse)
def mark_appointment_paid(
    appointment_id: int,
    tenant: Tenant = Depends(get_admin_tenant),
    service: AppointmentService = Depends(get_appointment_service),
):
    return _appointment_response(service.mark_paid(tenant.id, appointment_id))
