"""
Hold Service - Reservation hold lifecycle

Holds are short-lived provisional claims on a staff/time window. The
slot_claims unique constraint makes creation atomic across processes:
two writers racing for overlapping cells cannot both commit. Expiry is
an absolute timestamp checked on every read and on confirmation.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import CLAIM_GRANULARITY_MINUTES, HOLD_TTL_MINUTES
from ...models import Appointment, Client, ReservationHold
from ...shared.validators import format_hhmm, parse_hhmm, validate_email, validate_owner_token
from .availability_service import effective_window, within_booking_window
from .exceptions import (
    BookingError,
    HoldExpired,
    HoldNotFound,
    InvalidWindow,
    ResourceNotFound,
    SlotUnavailable,
    StorageUnavailable,
)
from .notifications import ChangeNotificationBridge, bridge as default_bridge
from .repository import SchedulingRepository
from .time_calculator import Interval, claim_cells, combine, local_now, utcnow

logger = logging.getLogger(__name__)


class HoldService:
    """Service layer for reservation holds"""

    def __init__(
        self,
        db: Session,
        bridge: ChangeNotificationBridge = default_bridge,
        clock: Callable[[], datetime] = utcnow,
        ttl_minutes: int = HOLD_TTL_MINUTES,
        granularity_minutes: int = CLAIM_GRANULARITY_MINUTES,
    ):
        self.db = db
        self.bridge = bridge
        self.clock = clock
        self.ttl = timedelta(minutes=ttl_minutes)
        self.granularity = granularity_minutes
        self.repo = SchedulingRepository()

    def create_hold(
        self,
        tenant_id: int,
        staff_id: int,
        service_id: int,
        target_date: date,
        slot_time: str,
        owner_token: str,
        duration_minutes: Optional[int] = None,
        client_id: Optional[int] = None,
    ) -> ReservationHold:
        """
        Provisionally claim a staff member's time window.

        The request is validated against working hours and the booking
        window before any write. The write itself is a single transaction
        whose claim rows collide on the unique constraint if anyone else
        already owns an overlapping cell.

        Raises:
            InvalidWindow: Outside working hours, misaligned, or outside the booking window
            SlotUnavailable: Another hold or appointment owns part of the window
            StorageUnavailable: Database failure
        """
        try:
            owner_token = validate_owner_token(owner_token)
        except ValueError as e:
            raise BookingError(str(e), user_message="Your booking session is missing. Please reload.")

        tenant = self.repo.get_tenant(self.db, tenant_id)
        if not tenant:
            raise ResourceNotFound(f"Tenant {tenant_id} not found", user_message="Salon not found.")
        service = self.repo.get_service(self.db, tenant_id, service_id)
        if not service:
            raise ResourceNotFound(f"Service {service_id} not found", user_message="Service not found.")
        qualified = self.repo.get_qualified_staff(self.db, tenant_id, service_id, staff_id)
        if not qualified:
            raise InvalidWindow(
                f"Staff {staff_id} does not perform service {service_id}",
                user_message="This staff member does not offer this service.",
            )
        _, custom_duration = qualified[0]
        duration = duration_minutes or custom_duration or service.duration_minutes
        if duration <= 0:
            raise InvalidWindow(f"Invalid duration {duration}")

        try:
            start = combine(target_date, parse_hhmm(slot_time))
            cells = claim_cells(start, duration, self.granularity)
        except ValueError as e:
            raise InvalidWindow(str(e)) from e
        requested = Interval.from_duration(start, duration)

        now_utc = self.clock()
        now_local = local_now(now_utc, tenant.timezone)
        earliest = now_local + timedelta(minutes=service.min_advance_minutes or 0)
        if start < earliest or not within_booking_window(service, target_date, now_local):
            raise InvalidWindow(
                f"{target_date} {format_hhmm(start)} is outside the booking window",
                user_message="This time can no longer be booked. Please choose another.",
            )

        weekly = {row.day_of_week: row for row in self.repo.get_weekly_schedules(self.db, tenant_id, [staff_id])}
        exceptions = self.repo.get_exceptions(self.db, tenant_id, [staff_id], target_date, target_date)
        window = effective_window(
            target_date, weekly.get(target_date.weekday()), exceptions[0] if exceptions else None
        )
        if window is None or requested.start < window.start or requested.end > window.end:
            raise InvalidWindow(
                f"{format_hhmm(start)}+{duration}m is outside working hours of staff {staff_id}",
                user_message="This time is outside working hours. Please choose another.",
            )

        hold = ReservationHold(
            tenant_id=tenant_id,
            staff_id=staff_id,
            service_id=service_id,
            client_id=client_id,
            owner_token=owner_token,
            slot_date=target_date,
            slot_time=format_hhmm(start),
            scheduled_at=start,
            duration_minutes=duration,
            expires_at=now_utc + self.ttl,
        )

        try:
            replaced_dates = self.repo.delete_holds_for_owner(self.db, tenant_id, owner_token)
            self.repo.delete_lapsed_claims(self.db, tenant_id, staff_id, cells, now_utc)
            self._check_unclaimed_conflicts(tenant_id, staff_id, requested)
            self.repo.add_hold_with_claims(self.db, hold, cells)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(
                f"⚠️ Slot race lost: tenant {tenant_id} staff {staff_id} "
                f"{target_date} {format_hhmm(start)} ({duration}m)"
            )
            raise SlotUnavailable(f"Window {target_date} {format_hhmm(start)} already claimed")
        except SlotUnavailable:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to create hold for tenant {tenant_id}: {e}")
            raise StorageUnavailable(str(e)) from e

        self.db.refresh(hold)
        logger.info(
            f"✅ Hold {hold.id} created: staff {staff_id} {target_date} {hold.slot_time} "
            f"({duration}m), expires {hold.expires_at.isoformat()}Z"
        )

        for replaced_date in replaced_dates:
            if replaced_date != target_date:
                self.bridge.publish(tenant_id, replaced_date, "hold_released", owner_replaced=True)
        self.bridge.publish(tenant_id, target_date, "hold_created", hold_id=hold.id, staff_id=staff_id)
        return hold

    def _check_unclaimed_conflicts(self, tenant_id: int, staff_id: int, requested: Interval) -> None:
        """
        Reject overlaps with appointments that own no claim rows.

        Appointments created through confirmation are covered by the unique
        constraint; this catches rows written by other flows.
        """
        appointments = self.repo.get_appointments_between(
            self.db, tenant_id, [staff_id], requested.start, requested.end
        )
        for appointment in appointments:
            if requested.overlaps(
                Interval.from_duration(appointment.scheduled_at, appointment.duration_minutes)
            ):
                raise SlotUnavailable(f"Window overlaps appointment {appointment.id}")

    def release_hold(self, hold_id: str) -> bool:
        """
        Delete a hold. Idempotent: unknown or already-resolved ids are a no-op.

        Returns:
            bool: True if a hold was deleted
        """
        try:
            hold = self.repo.get_hold(self.db, hold_id)
            if not hold:
                logger.info(f"ℹ️ Release of unknown hold {hold_id} ignored")
                return False
            tenant_id, slot_date = hold.tenant_id, hold.slot_date
            deleted = self.repo.delete_hold(self.db, hold_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to release hold {hold_id}: {e}")
            raise StorageUnavailable(str(e)) from e

        if not deleted:
            return False
        logger.info(f"🗑️ Hold {hold_id} released")
        self.bridge.publish(tenant_id, slot_date, "hold_released", hold_id=hold_id)
        return True

    def confirm_hold(
        self,
        hold_id: str,
        client_details: Optional[dict] = None,
        owner_token: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Appointment:
        """
        Convert a live hold into an appointment in one transaction.

        Args:
            hold_id: Hold to confirm
            client_details: first_name, last_name, email, phone
            owner_token: When given, must match the hold's owner
            notes: Free-text appointment notes

        Raises:
            HoldNotFound: Unknown hold, or owned by someone else
            HoldExpired: The hold lapsed before confirmation
        """
        client_details = client_details or {}
        try:
            hold = self.repo.get_hold(self.db, hold_id, for_update=True)
            if not hold or (owner_token and hold.owner_token != owner_token):
                raise HoldNotFound(f"Hold {hold_id} not found")

            tenant_id, slot_date = hold.tenant_id, hold.slot_date
            if self.clock() >= hold.expires_at:
                self.repo.delete_hold(self.db, hold_id)
                self.db.commit()
                logger.info(f"⏰ Hold {hold_id} expired before confirmation")
                self.bridge.publish(tenant_id, slot_date, "hold_expired", hold_id=hold_id)
                raise HoldExpired(f"Hold {hold_id} expired")

            client = self._resolve_client(hold, client_details)
            appointment = Appointment(
                tenant_id=hold.tenant_id,
                staff_id=hold.staff_id,
                service_id=hold.service_id,
                client_id=client.id if client else None,
                scheduled_at=hold.scheduled_at,
                duration_minutes=hold.duration_minutes,
                status="confirmed",
                is_paid=False,
                notes=notes,
            )
            self.db.add(appointment)
            self.db.flush()

            expected_cells = hold.duration_minutes // self.granularity
            moved = self.repo.transfer_claims_to_appointment(self.db, hold_id, appointment.id)
            if moved != expected_cells:
                # Claims were reclaimed by someone else after the hold lapsed
                logger.warning(f"⚠️ Hold {hold_id} lost {expected_cells - moved} claim cells")
                raise HoldExpired(f"Hold {hold_id} no longer owns its window")

            self.repo.delete_hold(self.db, hold_id)
            self.db.commit()
        except BookingError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Confirmation of hold {hold_id} conflicted: {e}")
            raise SlotUnavailable(str(e)) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to confirm hold {hold_id}: {e}")
            raise StorageUnavailable(str(e)) from e

        self.db.refresh(appointment)
        logger.info(
            f"✅ Hold {hold_id} confirmed as appointment {appointment.id} "
            f"(staff {appointment.staff_id}, {appointment.scheduled_at.isoformat()})"
        )
        self.bridge.publish(
            tenant_id,
            slot_date,
            "booking_created",
            appointment_id=appointment.id,
            staff_id=appointment.staff_id,
        )
        return appointment

    def _resolve_client(self, hold: ReservationHold, details: dict) -> Optional[Client]:
        if hold.client_id:
            client = self.repo.get_client(self.db, hold.tenant_id, hold.client_id)
            if client:
                return client

        email = details.get("email")
        if not email:
            return None
        try:
            email = validate_email(email)
        except ValueError as e:
            raise BookingError(str(e), user_message="Please enter a valid email address.")

        client = self.repo.get_client_by_email(self.db, hold.tenant_id, email)
        if client:
            if details.get("first_name"):
                client.first_name = details["first_name"]
            if details.get("last_name"):
                client.last_name = details["last_name"]
            if details.get("phone"):
                client.phone = details["phone"]
            return client

        client = Client(
            tenant_id=hold.tenant_id,
            first_name=details.get("first_name") or email.split("@")[0],
            last_name=details.get("last_name"),
            email=email,
            phone=details.get("phone"),
        )
        self.db.add(client)
        self.db.flush()
        logger.info(f"👤 Created client {client.id} for tenant {hold.tenant_id}")
        return client

    def sweep_expired_holds(self) -> dict:
        """
        Delete lapsed holds and their claims.

        Reads already ignore expired holds; this keeps the tables small.

        Returns:
            dict: {"deleted": count, "affected": [(tenant_id, date), ...]}
        """
        now_utc = self.clock()
        try:
            expired = self.repo.get_expired_holds(self.db, now_utc)
            affected = sorted({(hold.tenant_id, hold.slot_date) for hold in expired})
            deleted = self.repo.delete_holds(self.db, [hold.id for hold in expired])
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Expired hold sweep failed: {e}")
            raise StorageUnavailable(str(e)) from e

        if deleted:
            logger.info(f"🧹 Swept {deleted} expired holds across {len(affected)} tenant-days")
        for tenant_id, slot_date in affected:
            self.bridge.publish(tenant_id, slot_date, "holds_expired")
        return {"deleted": deleted, "affected": affected}
