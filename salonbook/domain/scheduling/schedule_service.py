"""Schedule service - Weekly working hours and schedule exceptions"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...models import ScheduleException, StaffMember, WorkingHours
from ...shared.validators import is_valid_time_range
from .exceptions import InvalidWindow, ResourceNotFound, StorageUnavailable
from .notifications import ChangeNotificationBridge, bridge as default_bridge
from .repository import SchedulingRepository
from .schemas import (
    WEEKDAYS,
    DaySchedule,
    ScheduleExceptionCreate,
    ScheduleExceptionUpdate,
    WeekSchedule,
)

logger = logging.getLogger(__name__)


class ScheduleService:
    """Service layer for staff schedule administration"""

    def __init__(self, db: Session, bridge: ChangeNotificationBridge = default_bridge):
        self.db = db
        self.bridge = bridge
        self.repo = SchedulingRepository()

    def _require_staff(self, tenant_id: int, staff_id: int) -> StaffMember:
        staff = self.repo.get_staff(self.db, tenant_id, staff_id)
        if not staff:
            raise ResourceNotFound(f"Staff {staff_id} not found", user_message="Staff member not found.")
        return staff

    # Weekly schedule

    def get_week_schedule(self, tenant_id: int, staff_id: int) -> WeekSchedule:
        self._require_staff(tenant_id, staff_id)
        rows = self.repo.get_weekly_schedules(self.db, tenant_id, [staff_id])

        days = {}
        for row in rows:
            days[WEEKDAYS[row.day_of_week]] = DaySchedule(
                enabled=row.is_active, start=row.start_time, end=row.end_time
            )
        return WeekSchedule(**days)

    def update_week_schedule(self, tenant_id: int, staff_id: int, data: WeekSchedule) -> WeekSchedule:
        """
        Replace a staff member's weekly hours.

        Enabled days need both times with end after start. Disabled days
        keep their times (if given) so the admin UI can toggle them back.
        """
        self._require_staff(tenant_id, staff_id)

        rows = []
        for day_index, day_name in enumerate(WEEKDAYS):
            day: DaySchedule = getattr(data, day_name)
            if day.enabled:
                if not day.start or not day.end:
                    raise InvalidWindow(
                        f"{day_name} is enabled without hours",
                        user_message=f"Please set working hours for {day_name.capitalize()}.",
                    )
                if not is_valid_time_range(day.start, day.end):
                    raise InvalidWindow(
                        f"{day_name}: end {day.end} is not after start {day.start}",
                        user_message=f"End time must be after start time on {day_name.capitalize()}.",
                    )
            if not day.start or not day.end:
                continue
            rows.append(
                WorkingHours(
                    tenant_id=tenant_id,
                    staff_id=staff_id,
                    day_of_week=day_index,
                    start_time=day.start,
                    end_time=day.end,
                    is_active=day.enabled,
                )
            )

        try:
            self.repo.replace_weekly_schedule(self.db, tenant_id, staff_id, rows)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to update schedule for staff {staff_id}: {e}")
            raise StorageUnavailable(str(e)) from e

        logger.info(f"📅 Weekly schedule updated for staff {staff_id} ({len(rows)} days)")
        self.bridge.publish(tenant_id, None, "schedule_updated", staff_id=staff_id)
        return self.get_week_schedule(tenant_id, staff_id)

    # Exceptions

    def list_exceptions(
        self,
        tenant_id: int,
        staff_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[ScheduleException]:
        self._require_staff(tenant_id, staff_id)
        return self.repo.get_exceptions(self.db, tenant_id, [staff_id], start_date, end_date)

    def create_exception(
        self, tenant_id: int, staff_id: int, data: ScheduleExceptionCreate
    ) -> ScheduleException:
        self._require_staff(tenant_id, staff_id)
        self._validate_exception_hours(data.isAvailable, data.startTime, data.endTime)

        exception = ScheduleException(
            tenant_id=tenant_id,
            staff_id=staff_id,
            date=data.date,
            is_available=data.isAvailable,
            start_time=data.startTime if data.isAvailable else None,
            end_time=data.endTime if data.isAvailable else None,
            reason=data.reason,
        )
        self._save_exception(exception, add=True)
        logger.info(f"📅 Schedule exception {exception.id} created for staff {staff_id} on {exception.date}")
        self.bridge.publish(tenant_id, exception.date, "schedule_exception_created", staff_id=staff_id)
        return exception

    def update_exception(
        self, tenant_id: int, exception_id: int, data: ScheduleExceptionUpdate
    ) -> ScheduleException:
        exception = self._require_exception(tenant_id, exception_id)
        old_date = exception.date

        updates = data.model_dump(exclude_unset=True)
        # Explicit nulls on non-nullable fields mean "leave unchanged"
        for key in ("isAvailable", "date"):
            if key in updates and updates[key] is None:
                del updates[key]
        is_available = updates.get("isAvailable", exception.is_available)
        start_time = updates.get("startTime", exception.start_time)
        end_time = updates.get("endTime", exception.end_time)
        self._validate_exception_hours(is_available, start_time, end_time)

        if updates.get("date") is not None:
            exception.date = updates["date"]
        if "reason" in updates:
            exception.reason = updates["reason"]
        exception.is_available = is_available
        exception.start_time = start_time if is_available else None
        exception.end_time = end_time if is_available else None

        self._save_exception(exception)
        logger.info(f"📅 Schedule exception {exception_id} updated")
        self.bridge.publish(tenant_id, exception.date, "schedule_exception_updated", staff_id=exception.staff_id)
        if old_date != exception.date:
            self.bridge.publish(tenant_id, old_date, "schedule_exception_updated", staff_id=exception.staff_id)
        return exception

    def delete_exception(self, tenant_id: int, exception_id: int) -> None:
        exception = self._require_exception(tenant_id, exception_id)
        staff_id, exception_date = exception.staff_id, exception.date
        try:
            self.db.delete(exception)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to delete schedule exception {exception_id}: {e}")
            raise StorageUnavailable(str(e)) from e

        logger.info(f"🗑️ Schedule exception {exception_id} deleted")
        self.bridge.publish(tenant_id, exception_date, "schedule_exception_deleted", staff_id=staff_id)

    def _require_exception(self, tenant_id: int, exception_id: int) -> ScheduleException:
        exception = self.repo.get_exception_by_id(self.db, tenant_id, exception_id)
        if not exception:
            raise ResourceNotFound(
                f"Schedule exception {exception_id} not found", user_message="Schedule exception not found."
            )
        return exception

    @staticmethod
    def _validate_exception_hours(is_available: bool, start_time: Optional[str], end_time: Optional[str]):
        if not is_available:
            return
        if bool(start_time) != bool(end_time):
            raise InvalidWindow(
                "Custom hours need both start and end time",
                user_message="Please set both a start and an end time.",
            )
        if start_time and not is_valid_time_range(start_time, end_time):
            raise InvalidWindow(
                f"End {end_time} is not after start {start_time}",
                user_message="End time must be after start time.",
            )

    def _save_exception(self, exception: ScheduleException, add: bool = False) -> None:
        staff_id, exception_date = exception.staff_id, exception.date
        try:
            if add:
                self.db.add(exception)
            self.db.commit()
            self.db.refresh(exception)
        except IntegrityError:
            self.db.rollback()
            raise InvalidWindow(
                f"Staff {staff_id} already has an exception on {exception_date}",
                user_message="There is already an exception for this date.",
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to save schedule exception: {e}")
            raise StorageUnavailable(str(e)) from e
