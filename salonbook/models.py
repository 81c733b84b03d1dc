import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(100), unique=True, index=True, nullable=False)  # subdomain / path key
    name = Column(String(255), nullable=False)
    timezone = Column(String(64), default="UTC", nullable=False)  # Olson name, e.g. Europe/Amsterdam
    admin_api_key_hash = Column(String(64), nullable=True)  # sha256 hex of the admin API key
    booking_settings = Column(JSON, nullable=True)  # free-form settings owned by the admin app
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    staff = relationship("StaffMember", back_populates="tenant")
    services = relationship("Service", back_populates="tenant")


class StaffMember(Base):
    __tablename__ = "staff_members"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    tenant = relationship("Tenant", back_populates="staff")
    schedules = relationship("WorkingHours", back_populates="staff", cascade="all, delete-orphan")
    exceptions = relationship(
        "ScheduleException", back_populates="staff", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    slot_interval_minutes = Column(Integer, default=30, nullable=False)  # candidate start granularity
    min_advance_minutes = Column(Integer, default=0, nullable=False)
    max_advance_days = Column(Integer, default=90, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    tenant = relationship("Tenant", back_populates="services")


class StaffService(Base):
    """Which staff members perform which services"""

    __tablename__ = "staff_services"
    __table_args__ = (UniqueConstraint("staff_id", "service_id", name="uq_staff_service"),)

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("staff_members.id"), nullable=False)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    custom_duration_minutes = Column(Integer, nullable=True)  # overrides Service.duration_minutes
    active = Column(Boolean, default=True, nullable=False)

    staff = relationship("StaffMember")
    service = relationship("Service")


class WorkingHours(Base):
    """Weekly working window for one staff member on one weekday"""

    __tablename__ = "staff_schedules"
    __table_args__ = (UniqueConstraint("staff_id", "day_of_week", name="uq_staff_weekday"),)

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("staff_members.id"), nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Monday ... 6 = Sunday
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)  # HH:MM
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    staff = relationship("StaffMember", back_populates="schedules")


class ScheduleException(Base):
    """Per-date override of the weekly schedule (vacation, sick day, custom hours)"""

    __tablename__ = "schedule_exceptions"
    __table_args__ = (UniqueConstraint("staff_id", "date", name="uq_staff_exception_date"),)

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("staff_members.id"), nullable=False)
    date = Column(Date, nullable=False, index=True)
    is_available = Column(Boolean, default=False, nullable=False)  # False = day off
    start_time = Column(String(5), nullable=True)  # HH:MM, custom hours when available
    end_time = Column(String(5), nullable=True)
    reason = Column(String(50), nullable=True)  # vacation, sick, personal, training, other
    created_at = Column(DateTime, server_default=func.now())

    staff = relationship("StaffMember", back_populates="exceptions")


class Client(Base):
    __tablename__ = "clients"
    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_client_tenant_email"),)

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Appointment(Base):
    """Durable booking. Cancellation is a status transition, rows are never deleted."""

    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("staff_members.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)
    scheduled_at = Column(DateTime, nullable=False, index=True)  # tenant-local wall clock
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String(20), default="confirmed", nullable=False)  # confirmed, completed, no_show, cancelled
    is_paid = Column(Boolean, default=False, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    staff = relationship("StaffMember")
    service = relationship("Service")
    client = relationship("Client")


class ReservationHold(Base):
    """Short-lived provisional claim on a staff/time slot"""

    __tablename__ = "booking_holds"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    staff_id = Column(Integer, ForeignKey("staff_members.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True)
    owner_token = Column(String(255), nullable=False, index=True)  # session id or client identity
    slot_date = Column(Date, nullable=False, index=True)
    slot_time = Column(String(5), nullable=False)  # HH:MM
    scheduled_at = Column(DateTime, nullable=False)  # tenant-local wall clock
    duration_minutes = Column(Integer, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)  # UTC
    created_at = Column(DateTime, server_default=func.now())


class SlotClaim(Base):
    """
    One exclusion cell of a staff member's timeline.

    Live holds and non-cancelled appointments own one row per cell they
    cover; the unique constraint is what makes hold creation atomic.
    """

    __tablename__ = "slot_claims"
    __table_args__ = (
        UniqueConstraint("tenant_id", "staff_id", "cell_start", name="uq_slot_claim_cell"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False)
    staff_id = Column(Integer, ForeignKey("staff_members.id"), nullable=False)
    cell_start = Column(DateTime, nullable=False)  # tenant-local wall clock
    hold_id = Column(
        String(36), ForeignKey("booking_holds.id", ondelete="CASCADE"), nullable=True, index=True
    )
    appointment_id = Column(
        Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=True, index=True
    )
    expires_at = Column(DateTime, nullable=True, index=True)  # UTC, NULL for appointments
