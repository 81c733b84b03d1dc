"""Scheduling repository - Database operations for the booking engine"""

from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...models import (
    Appointment,
    Client,
    ReservationHold,
    ScheduleException,
    Service,
    SlotClaim,
    StaffMember,
    StaffService,
    Tenant,
    WorkingHours,
)

# Appointments are looked up this far before a range so long bookings
# that started earlier still block the range.
LOOKBACK = timedelta(days=1)


class SchedulingRepository:
    """Repository for scheduling database operations"""

    # Tenants, services, staff

    @staticmethod
    def get_tenant(db: Session, tenant_id: int) -> Optional[Tenant]:
        return db.query(Tenant).filter(Tenant.id == tenant_id, Tenant.is_active.is_(True)).first()

    @staticmethod
    def get_tenant_by_slug(db: Session, slug: str) -> Optional[Tenant]:
        return db.query(Tenant).filter(Tenant.slug == slug, Tenant.is_active.is_(True)).first()

    @staticmethod
    def get_service(db: Session, tenant_id: int, service_id: int) -> Optional[Service]:
        return (
            db.query(Service)
            .filter(
                Service.id == service_id,
                Service.tenant_id == tenant_id,
                Service.is_active.is_(True),
            )
            .first()
        )

    @staticmethod
    def get_staff(db: Session, tenant_id: int, staff_id: int) -> Optional[StaffMember]:
        return (
            db.query(StaffMember)
            .filter(
                StaffMember.id == staff_id,
                StaffMember.tenant_id == tenant_id,
                StaffMember.is_active.is_(True),
            )
            .first()
        )

    @staticmethod
    def get_active_staff(
        db: Session, tenant_id: int, staff_id: Optional[int] = None
    ) -> list[StaffMember]:
        query = db.query(StaffMember).filter(
            StaffMember.tenant_id == tenant_id, StaffMember.is_active.is_(True)
        )
        if staff_id:
            query = query.filter(StaffMember.id == staff_id)
        return query.order_by(StaffMember.id).all()

    @staticmethod
    def get_qualified_staff(
        db: Session, tenant_id: int, service_id: int, staff_id: Optional[int] = None
    ) -> list[tuple[StaffMember, Optional[int]]]:
        """Staff who perform a service, with their custom duration (if any)"""
        query = (
            db.query(StaffMember, StaffService.custom_duration_minutes)
            .join(StaffService, StaffService.staff_id == StaffMember.id)
            .filter(
                StaffService.tenant_id == tenant_id,
                StaffService.service_id == service_id,
                StaffService.active.is_(True),
                StaffMember.is_active.is_(True),
            )
        )
        if staff_id:
            query = query.filter(StaffMember.id == staff_id)
        return [(staff, custom) for staff, custom in query.order_by(StaffMember.id).all()]

    # Working hours and exceptions

    @staticmethod
    def get_weekly_schedules(db: Session, tenant_id: int, staff_ids: Iterable[int]) -> list[WorkingHours]:
        staff_ids = list(staff_ids)
        if not staff_ids:
            return []
        return (
            db.query(WorkingHours)
            .filter(WorkingHours.tenant_id == tenant_id, WorkingHours.staff_id.in_(staff_ids))
            .order_by(WorkingHours.staff_id, WorkingHours.day_of_week)
            .all()
        )

    @staticmethod
    def replace_weekly_schedule(
        db: Session, tenant_id: int, staff_id: int, rows: list[WorkingHours]
    ) -> None:
        """Delete and re-insert a staff member's weekly schedule (caller commits)"""
        db.query(WorkingHours).filter(
            WorkingHours.tenant_id == tenant_id, WorkingHours.staff_id == staff_id
        ).delete(synchronize_session=False)
        db.add_all(rows)

    @staticmethod
    def get_exceptions(
        db: Session,
        tenant_id: int,
        staff_ids: Iterable[int],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[ScheduleException]:
        staff_ids = list(staff_ids)
        if not staff_ids:
            return []
        query = db.query(ScheduleException).filter(
            ScheduleException.tenant_id == tenant_id,
            ScheduleException.staff_id.in_(staff_ids),
        )
        if start_date:
            query = query.filter(ScheduleException.date >= start_date)
        if end_date:
            query = query.filter(ScheduleException.date <= end_date)
        return query.order_by(ScheduleException.date).all()

    @staticmethod
    def get_exception_by_id(
        db: Session, tenant_id: int, exception_id: int
    ) -> Optional[ScheduleException]:
        return (
            db.query(ScheduleException)
            .filter(ScheduleException.id == exception_id, ScheduleException.tenant_id == tenant_id)
            .first()
        )

    # Busy time

    @staticmethod
    def get_appointments_between(
        db: Session, tenant_id: int, staff_ids: Iterable[int], start: datetime, end: datetime
    ) -> list[Appointment]:
        """Non-cancelled appointments that may intersect [start, end)"""
        staff_ids = list(staff_ids)
        if not staff_ids:
            return []
        return (
            db.query(Appointment)
            .filter(
                Appointment.tenant_id == tenant_id,
                Appointment.staff_id.in_(staff_ids),
                Appointment.status != "cancelled",
                Appointment.scheduled_at >= start - LOOKBACK,
                Appointment.scheduled_at < end,
            )
            .order_by(Appointment.scheduled_at, Appointment.id)
            .all()
        )

    @staticmethod
    def get_active_holds_between(
        db: Session,
        tenant_id: int,
        staff_ids: Iterable[int],
        start: datetime,
        end: datetime,
        now: datetime,
        exclude_owner: Optional[str] = None,
    ) -> list[ReservationHold]:
        """Holds that have not lapsed (expires_at > now) and may intersect [start, end)"""
        staff_ids = list(staff_ids)
        if not staff_ids:
            return []
        query = db.query(ReservationHold).filter(
            ReservationHold.tenant_id == tenant_id,
            ReservationHold.staff_id.in_(staff_ids),
            ReservationHold.expires_at > now,
            ReservationHold.scheduled_at >= start - LOOKBACK,
            ReservationHold.scheduled_at < end,
        )
        if exclude_owner:
            query = query.filter(ReservationHold.owner_token != exclude_owner)
        return query.order_by(ReservationHold.scheduled_at).all()

    # Holds and claims

    @staticmethod
    def get_hold(db: Session, hold_id: str, for_update: bool = False) -> Optional[ReservationHold]:
        query = db.query(ReservationHold).filter(ReservationHold.id == hold_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def delete_holds_for_owner(db: Session, tenant_id: int, owner_token: str) -> list[date]:
        """Remove an owner's holds in a tenant; returns the slot dates they covered"""
        holds = (
            db.query(ReservationHold.id, ReservationHold.slot_date)
            .filter(
                ReservationHold.tenant_id == tenant_id,
                ReservationHold.owner_token == owner_token,
            )
            .all()
        )
        if not holds:
            return []
        hold_ids = [hold_id for hold_id, _ in holds]
        db.query(SlotClaim).filter(SlotClaim.hold_id.in_(hold_ids)).delete(synchronize_session=False)
        db.query(ReservationHold).filter(ReservationHold.id.in_(hold_ids)).delete(
            synchronize_session=False
        )
        return sorted({slot_date for _, slot_date in holds})

    @staticmethod
    def delete_lapsed_claims(
        db: Session, tenant_id: int, staff_id: int, cells: list[datetime], now: datetime
    ) -> int:
        """Free cells whose hold lapsed, so a new claim can take them"""
        return (
            db.query(SlotClaim)
            .filter(
                SlotClaim.tenant_id == tenant_id,
                SlotClaim.staff_id == staff_id,
                SlotClaim.cell_start.in_(cells),
                SlotClaim.expires_at.isnot(None),
                SlotClaim.expires_at <= now,
            )
            .delete(synchronize_session=False)
        )

    @staticmethod
    def add_hold_with_claims(db: Session, hold: ReservationHold, cells: list[datetime]) -> None:
        """
        Insert a hold and one claim per cell.

        Raises IntegrityError on flush when any cell is already claimed.
        """
        db.add(hold)
        db.flush()
        db.add_all(
            [
                SlotClaim(
                    tenant_id=hold.tenant_id,
                    staff_id=hold.staff_id,
                    cell_start=cell,
                    hold_id=hold.id,
                    expires_at=hold.expires_at,
                )
                for cell in cells
            ]
        )
        db.flush()

    @staticmethod
    def delete_hold(db: Session, hold_id: str) -> int:
        """Delete a hold and whatever claims it still owns"""
        db.query(SlotClaim).filter(SlotClaim.hold_id == hold_id).delete(synchronize_session=False)
        return (
            db.query(ReservationHold)
            .filter(ReservationHold.id == hold_id)
            .delete(synchronize_session=False)
        )

    @staticmethod
    def transfer_claims_to_appointment(db: Session, hold_id: str, appointment_id: int) -> int:
        """Re-point a hold's claims at the appointment created from it"""
        return (
            db.query(SlotClaim)
            .filter(SlotClaim.hold_id == hold_id)
            .update(
                {
                    SlotClaim.hold_id: None,
                    SlotClaim.appointment_id: appointment_id,
                    SlotClaim.expires_at: None,
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def release_appointment_claims(db: Session, appointment_id: int) -> int:
        return (
            db.query(SlotClaim)
            .filter(SlotClaim.appointment_id == appointment_id)
            .delete(synchronize_session=False)
        )

    @staticmethod
    def get_expired_holds(db: Session, now: datetime) -> list[ReservationHold]:
        return db.query(ReservationHold).filter(ReservationHold.expires_at <= now).all()

    @staticmethod
    def delete_holds(db: Session, hold_ids: list[str]) -> int:
        if not hold_ids:
            return 0
        db.query(SlotClaim).filter(SlotClaim.hold_id.in_(hold_ids)).delete(synchronize_session=False)
        return (
            db.query(ReservationHold)
            .filter(ReservationHold.id.in_(hold_ids))
            .delete(synchronize_session=False)
        )

    # Clients and appointments

    @staticmethod
    def get_client(db: Session, tenant_id: int, client_id: int) -> Optional[Client]:
        return db.query(Client).filter(Client.id == client_id, Client.tenant_id == tenant_id).first()

    @staticmethod
    def get_client_by_email(db: Session, tenant_id: int, email: str) -> Optional[Client]:
        return db.query(Client).filter(Client.tenant_id == tenant_id, Client.email == email).first()

    @staticmethod
    def get_appointment(db: Session, tenant_id: int, appointment_id: int) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.id == appointment_id, Appointment.tenant_id == tenant_id)
            .first()
        )
