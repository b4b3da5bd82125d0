from sqlalchemy import (
    Column, Integer, ForeignKey, DateTime, Date, Enum, Boolean, String, Float, JSON, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
import enum
import uuid
from app.core.database import Base
from app.utils.timezone import utc_now

# Namespace for deterministic per-day record ids
ATTENDANCE_NAMESPACE = uuid.UUID("6f1c1c52-4a0e-4f5e-9d36-6a2b8f0f4c11")


class AttendanceStatusEnum(enum.Enum):
    ABSENT = "ABSENT"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"


class VerificationStatusEnum(enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    FLAGGED = "FLAGGED"
    REJECTED = "REJECTED"


class CheckOutMethodEnum(enum.Enum):
    MANUAL = "MANUAL"
    AUTOMATIC = "AUTOMATIC"
    APP_CLOSED = "APP_CLOSED"
    BATTERY_DRAIN = "BATTERY_DRAIN"
    FORCE_CLOSE = "FORCE_CLOSE"
    ADMIN_OVERRIDE = "ADMIN_OVERRIDE"


def attendance_record_id(employee_id: int, attendance_date) -> str:
    """One id per (employee, day)"""
    return str(uuid.uuid5(ATTENDANCE_NAMESPACE, f"{employee_id}:{attendance_date.isoformat()}"))


class DailyAttendance(Base):
    __tablename__ = "daily_attendance"
    __table_args__ = (
        UniqueConstraint("employee_id", "attendance_date", name="uq_attendance_employee_date"),
    )

    id = Column(String(36), primary_key=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    attendance_date = Column(Date, nullable=False, index=True)
    status = Column(Enum(AttendanceStatusEnum), nullable=False, default=AttendanceStatusEnum.ABSENT)

    # Check-in
    check_in_time = Column(DateTime, nullable=True)  # UTC, naive
    check_in_latitude = Column(Float, nullable=True)
    check_in_longitude = Column(Float, nullable=True)
    check_in_accuracy = Column(Float, nullable=True)
    check_in_location_time = Column(DateTime, nullable=True)
    check_in_selfie_path = Column(String, nullable=True)
    check_in_similarity = Column(Float, nullable=True)
    battery_level_at_check_in = Column(Float, nullable=True)
    device = Column(String, nullable=True)

    # Check-out
    check_out_time = Column(DateTime, nullable=True)
    check_out_latitude = Column(Float, nullable=True)
    check_out_longitude = Column(Float, nullable=True)
    check_out_accuracy = Column(Float, nullable=True)
    check_out_selfie_path = Column(String, nullable=True)
    check_out_similarity = Column(Float, nullable=True)
    check_out_method = Column(Enum(CheckOutMethodEnum), nullable=True)
    check_out_reason = Column(Text, nullable=True)
    emergency_checkout = Column(Boolean, nullable=False, default=False)
    battery_level_at_check_out = Column(Float, nullable=True)
    work_hours = Column(Float, nullable=True)

    # Verification
    verification_status = Column(Enum(VerificationStatusEnum), nullable=False,
                                 default=VerificationStatusEnum.PENDING)
    verification_notes = Column(Text, nullable=True)
    verified_by = Column(String, nullable=True)
    verified_at = Column(DateTime, nullable=True)

    # Location tracking
    path_data = Column(JSON, nullable=False, default=list)
    total_distance = Column(Float, nullable=False, default=0.0)  # meters
    last_location_update = Column(DateTime, nullable=True)

    # Bumped by every write; compare-and-swap token for path appends
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    # Relationship
    employee = relationship("Employee", back_populates="attendance_records")
