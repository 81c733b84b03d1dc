"""Appointment service - Status/payment updates and calendar day views"""

import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import LAYOUT_MAX_COLUMNS
from ...models import Appointment
from .exceptions import InvalidTransition, ResourceNotFound, StorageUnavailable
from .layout import CalendarItem, RenderRecord, calculate_positions
from .notifications import ChangeNotificationBridge, bridge as default_bridge
from .repository import SchedulingRepository
from .time_calculator import day_bounds, utcnow

logger = logging.getLogger(__name__)

# confirmed -> completed | no_show | cancelled; the rest are terminal
ALLOWED_TRANSITIONS = {
    "confirmed": {"completed", "no_show", "cancelled"},
}
APPOINTMENT_STATUSES = ("confirmed", "completed", "no_show", "cancelled")


class AppointmentService:
    """Service layer for durable appointments"""

    def __init__(
        self,
        db: Session,
        bridge: ChangeNotificationBridge = default_bridge,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.bridge = bridge
        self.clock = clock
        self.repo = SchedulingRepository()

    def get_appointment(self, tenant_id: int, appointment_id: int) -> Appointment:
        appointment = self.repo.get_appointment(self.db, tenant_id, appointment_id)
        if not appointment:
            raise ResourceNotFound(
                f"Appointment {appointment_id} not found", user_message="Appointment not found."
            )
        return appointment

    def update_status(self, tenant_id: int, appointment_id: int, new_status: str) -> Appointment:
        """
        Move an appointment through its lifecycle.

        Cancelling frees the staff member's time: the appointment's claim
        rows are deleted and a change signal is published.
        """
        appointment = self.get_appointment(tenant_id, appointment_id)
        if new_status == appointment.status:
            return appointment
        if new_status not in ALLOWED_TRANSITIONS.get(appointment.status, set()):
            raise InvalidTransition(f"Cannot change appointment from {appointment.status} to {new_status}")

        old_status = appointment.status
        try:
            appointment.status = new_status
            if new_status == "cancelled":
                self.repo.release_appointment_claims(self.db, appointment.id)
            self.db.commit()
            self.db.refresh(appointment)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to update appointment {appointment_id}: {e}")
            raise StorageUnavailable(str(e)) from e

        logger.info(f"📝 Appointment {appointment_id} status: {old_status} -> {new_status}")
        if new_status == "cancelled":
            self.bridge.publish(
                tenant_id,
                appointment.scheduled_at.date(),
                "booking_cancelled",
                appointment_id=appointment.id,
                staff_id=appointment.staff_id,
            )
        return appointment

    def mark_paid(self, tenant_id: int, appointment_id: int) -> Appointment:
        appointment = self.get_appointment(tenant_id, appointment_id)
        if appointment.status == "cancelled":
            raise InvalidTransition(f"Appointment {appointment_id} is cancelled")
        if appointment.is_paid:
            return appointment

        try:
            appointment.is_paid = True
            appointment.paid_at = self.clock()
            self.db.commit()
            self.db.refresh(appointment)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to mark appointment {appointment_id} paid: {e}")
            raise StorageUnavailable(str(e)) from e

        logger.info(f"💰 Appointment {appointment_id} marked as paid")
        return appointment

    def build_day_calendar(
        self,
        tenant_id: int,
        target_date: date,
        staff_id: Optional[int] = None,
        max_columns: int = LAYOUT_MAX_COLUMNS,
    ) -> Dict[int, List[RenderRecord]]:
        """
        Render records for one day, laid out per staff lane.

        Overlaps only matter within a staff member's own column of the
        calendar, so each staff member is grouped independently.
        """
        if not self.repo.get_tenant(self.db, tenant_id):
            raise ResourceNotFound(f"Tenant {tenant_id} not found", user_message="Salon not found.")

        staff_ids = [staff.id for staff in self.repo.get_active_staff(self.db, tenant_id, staff_id)]
        day = day_bounds(target_date)

        lanes: Dict[int, List[CalendarItem]] = {sid: [] for sid in staff_ids}
        for appointment in self.repo.get_appointments_between(
            self.db, tenant_id, staff_ids, day.start, day.end
        ):
            if appointment.scheduled_at.date() != target_date:
                continue
            lanes[appointment.staff_id].append(
                CalendarItem(
                    id=appointment.id,
                    scheduled_at=appointment.scheduled_at,
                    duration_minutes=appointment.duration_minutes,
                    kind="appointment",
                    staff_id=appointment.staff_id,
                    title=appointment.service.name if appointment.service else None,
                )
            )
        for hold in self.repo.get_active_holds_between(
            self.db, tenant_id, staff_ids, day.start, day.end, self.clock()
        ):
            if hold.slot_date != target_date:
                continue
            lanes[hold.staff_id].append(
                CalendarItem(
                    id=hold.id,
                    scheduled_at=hold.scheduled_at,
                    duration_minutes=hold.duration_minutes,
                    kind="hold",
                    staff_id=hold.staff_id,
                )
            )

        return {
            sid: calculate_positions(sorted(items, key=lambda item: item.scheduled_at), max_columns)
            for sid, items in lanes.items()
        }
