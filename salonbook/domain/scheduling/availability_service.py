"""
Availability Service

Computes bookable start times by subtracting confirmed bookings, live
holds and non-working time from each staff member's working window.
Results are cached for a short TTL under a key that embeds the
change-notification version, so any observed change forces a recompute.
"""

import logging
import time
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...cache import Cache, build_availability_key, cache as default_cache
from ...config import (
    AVAILABILITY_CACHE_TTL_SECONDS,
    CLAIM_GRANULARITY_MINUTES,
    MAX_CALENDAR_RANGE_DAYS,
    READ_RETRY_ATTEMPTS,
    READ_RETRY_BASE_DELAY,
)
from ...models import ScheduleException, Service, Tenant, WorkingHours
from ...shared.validators import format_hhmm
from .exceptions import InvalidWindow, ResourceNotFound, StorageUnavailable
from .notifications import ChangeNotificationBridge, bridge as default_bridge
from .repository import SchedulingRepository
from .time_calculator import (
    Interval,
    combine,
    day_bounds,
    generate_candidate_starts,
    is_aligned,
    local_now,
    merge_intervals,
    subtract_all,
    utcnow,
)

logger = logging.getLogger(__name__)


def effective_window(
    target_date: date,
    weekly: Optional[WorkingHours],
    exception: Optional[ScheduleException],
) -> Optional[Interval]:
    """
    Working window for one staff member on one date.

    A schedule exception overrides the weekly schedule: unavailable means
    day off, available with times means custom hours, available without
    times falls back to the weekly hours. None means no working time.
    """
    start_time = end_time = None
    if exception is not None:
        if not exception.is_available:
            return None
        if exception.start_time and exception.end_time:
            start_time, end_time = exception.start_time, exception.end_time

    if start_time is None:
        if weekly is None or not weekly.is_active:
            return None
        start_time, end_time = weekly.start_time, weekly.end_time

    window = Interval(combine(target_date, start_time), combine(target_date, end_time))
    if window.end <= window.start:
        return None
    return window


def within_booking_window(service: Service, target_date: date, now_local: datetime) -> bool:
    """Date-level min/max advance check; per-slot minimum advance is applied separately"""
    earliest = now_local + timedelta(minutes=service.min_advance_minutes or 0)
    if target_date < earliest.date():
        return False
    latest = now_local.date() + timedelta(days=service.max_advance_days or 0)
    return target_date <= latest


class DayContext:
    """Schedules and busy time for a set of staff over a date range"""

    def __init__(self, weekly, exceptions, busy):
        self.weekly = weekly  # {staff_id: {weekday: WorkingHours}}
        self.exceptions = exceptions  # {(staff_id, date): ScheduleException}
        self.busy = busy  # {staff_id: [Interval]}

    def window_for(self, staff_id: int, target_date: date) -> Optional[Interval]:
        return effective_window(
            target_date,
            self.weekly.get(staff_id, {}).get(target_date.weekday()),
            self.exceptions.get((staff_id, target_date)),
        )

    def busy_for(self, staff_id: int) -> List[Interval]:
        return self.busy.get(staff_id, [])


class AvailabilityService:
    """Service layer for availability reads"""

    def __init__(
        self,
        db: Session,
        cache: Cache = default_cache,
        bridge: ChangeNotificationBridge = default_bridge,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.cache = cache
        self.bridge = bridge
        self.clock = clock
        self.repo = SchedulingRepository()

    # Public reads

    def get_available_slots(
        self,
        tenant_id: int,
        target_date: date,
        service_id: int,
        staff_id: Optional[int] = None,
        owner_token: Optional[str] = None,
    ) -> List[str]:
        """Ordered, de-duplicated HH:MM start times bookable with any candidate staff"""
        options = self.get_slot_options(tenant_id, target_date, service_id, staff_id, owner_token)
        return sorted({option["time"] for option in options})

    def get_slot_options(
        self,
        tenant_id: int,
        target_date: date,
        service_id: int,
        staff_id: Optional[int] = None,
        owner_token: Optional[str] = None,
    ) -> List[dict]:
        """Available (time, staff) pairs, sorted by time then staff"""
        version = self.bridge.current_version(tenant_id, target_date)
        cache_key = build_availability_key(
            tenant_id, target_date, version, service_id, staff_id, owner_token
        )
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        options = self._read_with_retry(
            lambda: self._compute_slot_options(
                tenant_id, target_date, service_id, staff_id, owner_token
            )
        )
        self.cache.set(cache_key, options, AVAILABILITY_CACHE_TTL_SECONDS)
        return options

    def get_staff_availability(
        self,
        tenant_id: int,
        start_date: date,
        end_date: date,
        staff_id: Optional[int] = None,
        service_id: Optional[int] = None,
    ) -> Dict[str, dict]:
        """
        Per-day working windows and free intervals for calendar views.

        Returns:
            dict: {
                "2030-01-08": {
                    "available": True,
                    "staff": [
                        {"staff_id": 1, "staff_name": "Anna", "window": {...}, "free": [...]},
                    ],
                },
                ...
            }
        """
        if end_date < start_date:
            raise InvalidWindow("end_date is before start_date")
        if (end_date - start_date).days + 1 > MAX_CALENDAR_RANGE_DAYS:
            raise InvalidWindow(
                f"Date range exceeds {MAX_CALENDAR_RANGE_DAYS} days",
                user_message=f"Please pick a range of at most {MAX_CALENDAR_RANGE_DAYS} days.",
            )
        return self._read_with_retry(
            lambda: self._compute_staff_availability(
                tenant_id, start_date, end_date, staff_id, service_id
            )
        )

    # Shared building blocks

    def load_day_context(
        self,
        tenant_id: int,
        staff_ids: List[int],
        start_date: date,
        end_date: date,
        now_utc: datetime,
        exclude_owner: Optional[str] = None,
    ) -> DayContext:
        weekly = defaultdict(dict)
        for row in self.repo.get_weekly_schedules(self.db, tenant_id, staff_ids):
            weekly[row.staff_id][row.day_of_week] = row

        exceptions = {
            (row.staff_id, row.date): row
            for row in self.repo.get_exceptions(self.db, tenant_id, staff_ids, start_date, end_date)
        }

        range_start = day_bounds(start_date).start
        range_end = day_bounds(end_date).end
        busy = defaultdict(list)
        for appointment in self.repo.get_appointments_between(
            self.db, tenant_id, staff_ids, range_start, range_end
        ):
            busy[appointment.staff_id].append(
                Interval.from_duration(appointment.scheduled_at, appointment.duration_minutes)
            )
        for hold in self.repo.get_active_holds_between(
            self.db, tenant_id, staff_ids, range_start, range_end, now_utc, exclude_owner
        ):
            busy[hold.staff_id].append(Interval.from_duration(hold.scheduled_at, hold.duration_minutes))

        return DayContext(weekly, exceptions, busy)

    def require_tenant(self, tenant_id: int) -> Tenant:
        tenant = self.repo.get_tenant(self.db, tenant_id)
        if not tenant:
            raise ResourceNotFound(f"Tenant {tenant_id} not found", user_message="Salon not found.")
        return tenant

    def require_service(self, tenant_id: int, service_id: int) -> Service:
        service = self.repo.get_service(self.db, tenant_id, service_id)
        if not service:
            raise ResourceNotFound(
                f"Service {service_id} not found for tenant {tenant_id}",
                user_message="Service not found.",
            )
        return service

    # Computation

    def _compute_slot_options(
        self,
        tenant_id: int,
        target_date: date,
        service_id: int,
        staff_id: Optional[int],
        owner_token: Optional[str],
    ) -> List[dict]:
        tenant = self.require_tenant(tenant_id)
        service = self.require_service(tenant_id, service_id)

        now_utc = self.clock()
        now_local = local_now(now_utc, tenant.timezone)
        if not within_booking_window(service, target_date, now_local):
            logger.debug(f"📅 {target_date} outside booking window for service {service_id}")
            return []

        staff_entries = self.repo.get_qualified_staff(self.db, tenant_id, service_id, staff_id)
        if not staff_entries:
            return []

        staff_ids = [staff.id for staff, _ in staff_entries]
        context = self.load_day_context(
            tenant_id, staff_ids, target_date, target_date, now_utc, exclude_owner=owner_token
        )
        earliest = now_local + timedelta(minutes=service.min_advance_minutes or 0)

        options = []
        for staff, custom_duration in staff_entries:
            window = context.window_for(staff.id, target_date)
            if window is None:
                continue

            duration = custom_duration or service.duration_minutes
            busy = context.busy_for(staff.id)
            for start in generate_candidate_starts(window, duration, service.slot_interval_minutes):
                if start < earliest:
                    continue
                # Only offer starts a hold can claim
                if not is_aligned(start, duration, CLAIM_GRANULARITY_MINUTES):
                    continue
                candidate = Interval.from_duration(start, duration)
                if any(candidate.overlaps(block) for block in busy):
                    continue
                options.append(
                    {
                        "time": format_hhmm(start),
                        "staff_id": staff.id,
                        "staff_name": staff.display_name,
                    }
                )

        options.sort(key=lambda option: (option["time"], option["staff_id"]))
        return options

    def _compute_staff_availability(
        self,
        tenant_id: int,
        start_date: date,
        end_date: date,
        staff_id: Optional[int],
        service_id: Optional[int],
    ) -> Dict[str, dict]:
        tenant = self.require_tenant(tenant_id)
        service = self.require_service(tenant_id, service_id) if service_id else None

        if service:
            staff_entries = self.repo.get_qualified_staff(self.db, tenant_id, service.id, staff_id)
        else:
            staff_entries = [(staff, None) for staff in self.repo.get_active_staff(self.db, tenant_id, staff_id)]

        now_utc = self.clock()
        now_local = local_now(now_utc, tenant.timezone)
        context = self.load_day_context(
            tenant_id, [staff.id for staff, _ in staff_entries], start_date, end_date, now_utc
        )

        result = {}
        current_date = start_date
        while current_date <= end_date:
            staff_days = []
            day_available = False

            for staff, custom_duration in staff_entries:
                window = context.window_for(staff.id, current_date)
                free = []
                if window is not None:
                    free = subtract_all([window], merge_intervals(context.busy_for(staff.id)))
                    # Time already passed is not bookable
                    free = [
                        Interval(max(piece.start, now_local), piece.end)
                        for piece in free
                        if piece.end > now_local
                    ]
                    if service:
                        min_minutes = custom_duration or service.duration_minutes
                        if not within_booking_window(service, current_date, now_local):
                            free = []
                    else:
                        min_minutes = 1
                    if any(piece.minutes >= min_minutes for piece in free):
                        day_available = True

                staff_days.append(
                    {
                        "staff_id": staff.id,
                        "staff_name": staff.display_name,
                        "window": _interval_dict(window) if window else None,
                        "free": [_interval_dict(piece) for piece in free],
                    }
                )

            result[current_date.isoformat()] = {"available": day_available, "staff": staff_days}
            current_date += timedelta(days=1)

        return result

    def _read_with_retry(self, read: Callable):
        """Retry transient read failures with exponential backoff"""
        for attempt in range(READ_RETRY_ATTEMPTS):
            try:
                return read()
            except OperationalError as e:
                self.db.rollback()
                if attempt == READ_RETRY_ATTEMPTS - 1:
                    logger.error(f"❌ Availability read failed after {READ_RETRY_ATTEMPTS} attempts: {e}")
                    raise StorageUnavailable(str(e)) from e
                logger.warning(f"🔄 Retry {attempt + 1}/{READ_RETRY_ATTEMPTS} for availability read: {e}")
                time.sleep(READ_RETRY_BASE_DELAY * (2**attempt))
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"❌ Availability read failed: {e}")
                raise StorageUnavailable(str(e)) from e


def _interval_dict(interval: Interval) -> dict:
    return {"start": format_hhmm(interval.start), "end": format_hhmm(interval.end)}
