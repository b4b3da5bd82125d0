import logging
import math
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import RecordNotFound, ValidationFailed
from app.core.security import SessionContext, ensure_can_access_employee, ensure_can_review
from app.crud import attendance as crud_attendance
from app.models.attendance import AttendanceStatusEnum, DailyAttendance
from app.schemas.attendance import (
    AttendanceListFilters,
    AttendanceListResponse,
    AttendanceRecord,
    AttendanceResult,
    AttendanceStatusResponse,
    LocationData,
    PathPoint,
    SignedImageUrl,
)
from app.services.file_service import SelfieStorage, selfie_storage
from app.utils.timezone import as_utc, business_date, utc_now

logger = logging.getLogger(__name__)


def attendance_result(record: DailyAttendance, emergency: bool = False) -> AttendanceResult:
    """Short form returned by check-in and check-out"""
    return AttendanceResult(
        attendanceId=record.id,
        timestamp=as_utc(utc_now()),
        status=record.status,
        checkInTime=as_utc(record.check_in_time),
        checkOutTime=as_utc(record.check_out_time),
        workHours=record.work_hours,
        verificationStatus=record.verification_status,
        emergencyCheckout=emergency or bool(record.emergency_checkout),
    )


def serialize_record(record: DailyAttendance) -> AttendanceRecord:
    check_in_location = None
    if record.check_in_latitude is not None:
        check_in_location = LocationData(
            latitude=record.check_in_latitude,
            longitude=record.check_in_longitude,
            accuracy=record.check_in_accuracy,
            timestamp=as_utc(record.check_in_location_time),
        )
    check_out_location = None
    if record.check_out_latitude is not None:
        check_out_location = LocationData(
            latitude=record.check_out_latitude,
            longitude=record.check_out_longitude,
            accuracy=record.check_out_accuracy,
            timestamp=as_utc(record.check_out_time),
        )

    return AttendanceRecord(
        id=record.id,
        employeeId=record.employee_id,
        employeeName=record.employee.full_name if record.employee else None,
        date=record.attendance_date,
        status=record.status,
        checkInTime=as_utc(record.check_in_time),
        checkOutTime=as_utc(record.check_out_time),
        checkInLocation=check_in_location,
        checkOutLocation=check_out_location,
        checkInSelfiePath=record.check_in_selfie_path,
        checkOutSelfiePath=record.check_out_selfie_path,
        checkOutMethod=record.check_out_method,
        checkOutReason=record.check_out_reason,
        emergencyCheckout=bool(record.emergency_checkout),
        verificationStatus=record.verification_status,
        verificationNotes=record.verification_notes,
        verifiedBy=record.verified_by,
        verifiedAt=as_utc(record.verified_at),
        workHours=record.work_hours,
        locationPath=[PathPoint(**point) for point in (record.path_data or [])],
        totalDistance=record.total_distance or 0.0,
        device=record.device,
        createdAt=as_utc(record.created_at),
        updatedAt=as_utc(record.updated_at),
    )


async def get_status(db: AsyncSession, employee_id: int, day: Optional[date] = None) -> AttendanceStatusResponse:
    """Today's record for the employee, or an ABSENT placeholder"""
    day = day or business_date()
    record = await crud_attendance.get_record_for_day(db, employee_id, day)

    if record is None:
        return AttendanceStatusResponse(
            employeeId=employee_id,
            date=day,
            status=AttendanceStatusEnum.ABSENT,
            requiresCheckOut=False,
        )

    battery = None
    if record.path_data:
        battery = record.path_data[-1].get("batteryLevel")
    if battery is None:
        battery = record.battery_level_at_check_out or record.battery_level_at_check_in

    work_hours = record.work_hours
    if record.status == AttendanceStatusEnum.CHECKED_IN and record.check_in_time:
        # Running total while still on shift
        work_hours = round(max((utc_now() - record.check_in_time).total_seconds(), 0) / 3600, 2)

    return AttendanceStatusResponse(
        employeeId=employee_id,
        date=day,
        status=record.status,
        requiresCheckOut=record.status == AttendanceStatusEnum.CHECKED_IN,
        currentAttendanceId=record.id,
        checkInTime=as_utc(record.check_in_time),
        checkOutTime=as_utc(record.check_out_time),
        workHours=work_hours,
        totalDistance=record.total_distance or 0.0,
        lastLocationUpdate=as_utc(record.last_location_update),
        batteryLevel=battery,
        verificationStatus=record.verification_status,
    )


async def _page(db: AsyncSession, filters: AttendanceListFilters) -> AttendanceListResponse:
    records, total = await crud_attendance.list_records(db, filters)
    total_pages = math.ceil(total / filters.limit) if total else 0
    return AttendanceListResponse(
        records=[serialize_record(record) for record in records],
        page=filters.page,
        limit=filters.limit,
        total=total,
        totalPages=total_pages,
        hasMore=filters.page < total_pages,
    )


async def list_history(db: AsyncSession, employee_id: int, page: int = 1, limit: int = 50,
                       date_from: Optional[date] = None, date_to: Optional[date] = None) -> AttendanceListResponse:
    """An employee's own records, newest day first"""
    filters = AttendanceListFilters(
        page=page, limit=limit, dateFrom=date_from, dateTo=date_to, employeeId=employee_id
    )
    return await _page(db, filters)


async def list_records(db: AsyncSession, filters: AttendanceListFilters,
                       session: SessionContext) -> AttendanceListResponse:
    """Review listing across all employees"""
    ensure_can_review(session)
    return await _page(db, filters)


def record_id_from_path(object_path: str) -> Optional[str]:
    """attendance/YYYY/MM/DD/<record id>/<file> -> record id"""
    parts = (object_path or "").split("/")
    if len(parts) != 6 or parts[0] != "attendance":
        return None
    return parts[4]


async def get_image_url(db: AsyncSession, object_path: str, session: SessionContext,
                        storage: SelfieStorage = selfie_storage) -> SignedImageUrl:
    """
    Signed, time-limited URL for a stored selfie.

    Args:
        object_path: storage key as returned in checkInSelfiePath / checkOutSelfiePath
        session: caller; employees may only read their own selfies

    Returns:
        SignedImageUrl valid for SIGNED_URL_TTL_SECONDS from now
    """
    record_id = record_id_from_path(object_path)
    if record_id is None:
        raise ValidationFailed("Invalid image path")

    record = await crud_attendance.get_record(db, record_id)
    if record is None:
        raise RecordNotFound()
    ensure_can_access_employee(session, record.employee_id)

    if object_path not in (record.check_in_selfie_path, record.check_out_selfie_path):
        raise RecordNotFound("No selfie stored under this path")

    url, expires_at = storage.create_signed_url(object_path)
    logger.debug("Signed URL for %s issued to %s", object_path, session.subject)
    return SignedImageUrl(signedUrl=url, expiresAt=expires_at)
