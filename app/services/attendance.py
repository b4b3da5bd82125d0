"""
Attendance state machine.

One record per (employee, business day) moving ABSENT -> CHECKED_IN ->
CHECKED_OUT. Every transition is a conditional write against the stored
status, so two racing requests for the same day cannot both succeed.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import LOCATION_UPDATE_MAX_RETRIES
from app.core.exceptions import (
    AlreadyCheckedIn,
    AlreadyCheckedOut,
    EmployeeNotFound,
    Forbidden,
    InvalidCheckOutTime,
    NoActiveCheckIn,
    RecordNotActive,
    RecordNotFound,
    UpdateConflict,
    ValidationFailed,
)
from app.core.security import SessionContext, ensure_can_access_employee, ensure_can_review
from app.crud import attendance as crud_attendance
from app.crud import employee as crud_employee
from app.models.attendance import (
    AttendanceStatusEnum,
    CheckOutMethodEnum,
    DailyAttendance,
    VerificationStatusEnum,
    attendance_record_id,
)
from app.schemas.attendance import (
    CheckInRequest,
    EmergencyCheckOutRequest,
    LocationData,
    LocationUpdateRequest,
    ManualCheckOutRequest,
)
from app.services import face_id
from app.services.file_service import (
    SelfieStorage,
    StorageError,
    decode_selfie,
    selfie_object_path,
    selfie_storage,
)
from app.services.location import (
    accuracy_warning,
    append_path_point,
    format_distance,
    make_path_point,
    validate_coordinates,
)
from app.utils.timezone import business_date, format_business_time, to_utc_naive, utc_now

logger = logging.getLogger(__name__)


@dataclass
class AttendanceOutcome:
    record: DailyAttendance
    message: str
    emergency: bool = False
    warnings: List[str] = field(default_factory=list)


def calculate_work_hours(check_in_time, check_out_time) -> float:
    """Hours between check-in and check-out, rounded to 2 decimals"""
    hours = (check_out_time - check_in_time).total_seconds() / 3600
    if hours < 0:
        raise InvalidCheckOutTime()
    return round(hours, 2)


def _validate_location(location: LocationData) -> List[str]:
    errors = validate_coordinates(location.latitude, location.longitude, location.accuracy)
    if errors:
        raise ValidationFailed(" ".join(errors))
    warning = accuracy_warning(location.accuracy)
    return [warning] if warning else []


def _conflict_for(record: Optional[DailyAttendance]):
    if record is not None and record.status == AttendanceStatusEnum.CHECKED_OUT:
        return AlreadyCheckedOut()
    return AlreadyCheckedIn()


async def _load_employee(db: AsyncSession, employee_id: int):
    employee = await crud_employee.get_employee_by_id(db, employee_id)
    if not employee:
        raise EmployeeNotFound()
    if not employee.is_active:
        raise Forbidden("Employee account is not active")
    return employee


async def _store_selfie(db: AsyncSession, storage: SelfieStorage, record: DailyAttendance,
                        raw: bytes, kind: str, taken_at, column: str) -> Optional[str]:
    """
    Write the selfie after the transition has been committed.

    A failed write leaves the transition in place and comes back as a warning.
    """
    object_path = selfie_object_path(record.id, record.attendance_date, kind, taken_at)
    try:
        await storage.save_selfie(object_path, raw)
    except StorageError as e:
        logger.warning("Selfie for attendance %s not stored: %s", record.id, e)
        return "Selfie could not be stored; attendance was recorded without it"
    await crud_attendance.set_selfie_path(db, record.id, column, object_path)
    return None


async def check_in(db: AsyncSession, employee_id: int, request: CheckInRequest,
                   storage: SelfieStorage = selfie_storage) -> AttendanceOutcome:
    employee = await _load_employee(db, employee_id)

    warnings = _validate_location(request.location)
    raw_selfie = decode_selfie(request.selfie)

    checked_in_at = to_utc_naive(request.timestamp)
    day = business_date(checked_in_at)
    record_id = attendance_record_id(employee_id, day)

    existing = await crud_attendance.get_record_for_day(db, employee_id, day)
    if existing is not None and existing.status != AttendanceStatusEnum.ABSENT:
        raise _conflict_for(existing)

    quality = request.faceQuality
    face = face_id.evaluate(
        request.faceEmbedding,
        employee.face_embedding,
        quality_passed=quality.passed if quality else True,
        quality_warnings=quality.warnings if quality else None,
    )
    warnings.extend(face.warnings)

    device = request.deviceInfo
    values = {
        "check_in_time": checked_in_at,
        "check_in_latitude": request.location.latitude,
        "check_in_longitude": request.location.longitude,
        "check_in_accuracy": request.location.accuracy,
        "check_in_location_time": (to_utc_naive(request.location.timestamp)
                                   if request.location.timestamp else checked_in_at),
        "check_in_similarity": face.similarity,
        "verification_status": face.status,
        "battery_level_at_check_in": device.batteryLevel if device else None,
        "device": device.model if device else None,
        "last_location_update": checked_in_at,
    }

    if existing is not None:
        if not await crud_attendance.promote_absent(db, record_id, values):
            raise _conflict_for(await crud_attendance.get_record(db, record_id))
    else:
        try:
            await crud_attendance.insert_check_in(
                db, id=record_id, employee_id=employee_id, attendance_date=day, **values
            )
        except IntegrityError:
            await db.rollback()
            logger.info("Concurrent check-in rejected for employee %s on %s", employee_id, day)
            raise _conflict_for(await crud_attendance.get_record(db, record_id))

    record = await crud_attendance.get_record(db, record_id)
    warning = await _store_selfie(db, storage, record, raw_selfie, "checkin",
                                  checked_in_at, "check_in_selfie_path")
    if warning:
        warnings.append(warning)

    logger.info("Employee %s checked in at %s (%s)", employee_id,
                format_business_time(checked_in_at), face.status.value)
    return AttendanceOutcome(
        record=await crud_attendance.get_record(db, record_id),
        message="Check-in successful",
        warnings=warnings,
    )


def _emergency_location(request: EmergencyCheckOutRequest, record: DailyAttendance):
    """Supplied location, else the last tracked sample, else the check-in fix"""
    if request.lastLocationData is not None:
        loc = request.lastLocationData
        return loc.latitude, loc.longitude, loc.accuracy
    if record.path_data:
        last = record.path_data[-1]
        return last["latitude"], last["longitude"], last.get("accuracy")
    return record.check_in_latitude, record.check_in_longitude, record.check_in_accuracy


async def check_out(db: AsyncSession, employee_id: int,
                    request: Union[ManualCheckOutRequest, EmergencyCheckOutRequest],
                    storage: SelfieStorage = selfie_storage) -> AttendanceOutcome:
    employee = await _load_employee(db, employee_id)
    emergency = isinstance(request, EmergencyCheckOutRequest)
    warnings: List[str] = []

    if emergency:
        if not (request.reason or "").strip():
            raise ValidationFailed("Reason is required for emergency check-out")
        raw_selfie = decode_selfie(request.selfieData) if request.selfieData else None
        if request.lastLocationData is not None:
            warnings.extend(_validate_location(request.lastLocationData))
    else:
        warnings.extend(_validate_location(request.location))
        raw_selfie = decode_selfie(request.selfie)

    checked_out_at = to_utc_naive(request.timestamp)
    day = business_date(checked_out_at)

    record = await crud_attendance.get_record_for_day(db, employee_id, day)
    if record is None or record.status == AttendanceStatusEnum.ABSENT:
        raise NoActiveCheckIn()
    if record.status == AttendanceStatusEnum.CHECKED_OUT:
        raise AlreadyCheckedOut()
    if checked_out_at <= record.check_in_time:
        raise InvalidCheckOutTime()

    quality = request.faceQuality
    if emergency and raw_selfie is None:
        face = face_id.FaceCheck(
            VerificationStatusEnum.FLAGGED,
            warnings=["Emergency check-out without a selfie cannot be biometrically confirmed"],
        )
    else:
        face = face_id.evaluate(
            request.faceEmbedding,
            employee.face_embedding,
            quality_passed=quality.passed if quality else True,
            quality_warnings=quality.warnings if quality else None,
        )
    warnings.extend(face.warnings)

    # A reviewer's REJECTED is never downgraded to FLAGGED
    if face.passed or record.verification_status == VerificationStatusEnum.REJECTED:
        verification_status = record.verification_status
    else:
        verification_status = VerificationStatusEnum.FLAGGED

    if emergency:
        latitude, longitude, accuracy = _emergency_location(request, record)
        method = CheckOutMethodEnum(request.method)
    else:
        latitude, longitude, accuracy = (request.location.latitude, request.location.longitude,
                                         request.location.accuracy)
        method = CheckOutMethodEnum.MANUAL

    device = request.deviceInfo
    values = {
        "check_out_time": checked_out_at,
        "check_out_latitude": latitude,
        "check_out_longitude": longitude,
        "check_out_accuracy": accuracy,
        "check_out_similarity": face.similarity,
        "check_out_method": method,
        "check_out_reason": request.reason,
        "emergency_checkout": emergency,
        "battery_level_at_check_out": device.batteryLevel if device else None,
        "work_hours": calculate_work_hours(record.check_in_time, checked_out_at),
        "verification_status": verification_status,
    }
    if emergency:
        values["verification_notes"] = f"Emergency check-out: {request.reason}"

    if not await crud_attendance.close_record(db, record.id, values):
        current = await crud_attendance.get_record(db, record.id)
        if current is not None and current.status == AttendanceStatusEnum.CHECKED_OUT:
            raise AlreadyCheckedOut()
        raise NoActiveCheckIn()

    if raw_selfie is not None:
        kind = "emergency-checkout" if emergency else "checkout"
        warning = await _store_selfie(db, storage, record, raw_selfie, kind,
                                      checked_out_at, "check_out_selfie_path")
        if warning:
            warnings.append(warning)

    closed = await crud_attendance.get_record(db, record.id)
    logger.info("Employee %s checked out (%s) after %.2f h, %s travelled", employee_id,
                method.value, closed.work_hours, format_distance(closed.total_distance or 0.0))
    return AttendanceOutcome(
        record=closed,
        message="Emergency check-out processed successfully" if emergency else "Check-out successful",
        emergency=emergency,
        warnings=warnings,
    )


async def update_location_tracking(db: AsyncSession, attendance_id: str, request: LocationUpdateRequest,
                                   session: Optional[SessionContext] = None) -> bool:
    """
    Append one location sample to a CHECKED_IN record.

    Returns True when the sample was appended and False when it was discarded
    as a duplicate or out-of-order delivery.
    """
    errors = validate_coordinates(request.location.latitude, request.location.longitude,
                                  request.location.accuracy)
    if errors:
        raise ValidationFailed(" ".join(errors))

    sampled_at = to_utc_naive(request.timestamp)
    point = make_path_point(
        request.location.latitude,
        request.location.longitude,
        sampled_at,
        accuracy=request.location.accuracy,
        battery_level=request.batteryLevel,
    )

    for _ in range(LOCATION_UPDATE_MAX_RETRIES + 1):
        record = await crud_attendance.get_record(db, attendance_id)
        if record is None:
            raise RecordNotFound()
        if session is not None:
            ensure_can_access_employee(session, record.employee_id)
        if record.status != AttendanceStatusEnum.CHECKED_IN:
            raise RecordNotActive("Location updates are only accepted while checked in")

        appended = append_path_point(list(record.path_data or []), point)
        if appended is None:
            logger.debug("Stale location sample for %s at %s ignored", attendance_id, point["timestamp"])
            return False

        path, added = appended
        if await crud_attendance.append_location(
            db, attendance_id, record.version, path, (record.total_distance or 0.0) + added, sampled_at
        ):
            return True
        logger.debug("Location append for %s lost a race, retrying", attendance_id)

    raise UpdateConflict()


async def update_verification(db: AsyncSession, record_id: str, new_status, notes: Optional[str],
                              reviewer: SessionContext) -> DailyAttendance:
    try:
        status = VerificationStatusEnum(new_status)
    except ValueError:
        raise ValidationFailed(f"Unknown verification status: {new_status}")

    record = await crud_attendance.get_record(db, record_id)
    if record is None:
        raise RecordNotFound()
    ensure_can_review(reviewer)

    await crud_attendance.update_verification(db, record_id, {
        "verification_status": status,
        "verification_notes": notes,
        "verified_by": reviewer.subject,
        "verified_at": utc_now(),
    })
    logger.info("Attendance %s marked %s by %s", record_id, status.value, reviewer.subject)
    return await crud_attendance.get_record(db, record_id)
