from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload
from sqlalchemy import and_, func, desc, update
from datetime import date, datetime
from typing import Optional, List, Tuple
from app.models.attendance import AttendanceStatusEnum, DailyAttendance
from app.schemas.attendance import AttendanceListFilters
from app.utils.timezone import utc_now


async def get_record(db: AsyncSession, record_id: str) -> Optional[DailyAttendance]:
    """Fresh read of one record (bypasses the identity map)"""
    result = await db.execute(
        select(DailyAttendance)
        .options(selectinload(DailyAttendance.employee))
        .where(DailyAttendance.id == record_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_record_for_day(db: AsyncSession, employee_id: int, day: date) -> Optional[DailyAttendance]:
    result = await db.execute(
        select(DailyAttendance)
        .where(
            and_(
                DailyAttendance.employee_id == employee_id,
                DailyAttendance.attendance_date == day
            )
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def insert_check_in(db: AsyncSession, **values) -> DailyAttendance:
    """
    INSERT a new CHECKED_IN record.

    The primary key is deterministic per (employee, day) so a concurrent insert
    for the same day fails with IntegrityError; the caller rolls back.
    """
    db_record = DailyAttendance(
        status=AttendanceStatusEnum.CHECKED_IN,
        path_data=[],
        total_distance=0.0,
        version=1,
        **values
    )
    db.add(db_record)
    await db.commit()
    await db.refresh(db_record)
    return db_record


async def _conditional_update(db: AsyncSession, record_id: str, conditions: list, values: dict) -> bool:
    values = dict(values)
    values["updated_at"] = utc_now()
    values["version"] = DailyAttendance.version + 1
    result = await db.execute(
        update(DailyAttendance)
        .where(and_(DailyAttendance.id == record_id, *conditions))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def promote_absent(db: AsyncSession, record_id: str, values: dict) -> bool:
    """ABSENT -> CHECKED_IN, only if nobody else moved the record first"""
    values = dict(values, status=AttendanceStatusEnum.CHECKED_IN)
    return await _conditional_update(
        db, record_id, [DailyAttendance.status == AttendanceStatusEnum.ABSENT], values
    )


async def close_record(db: AsyncSession, record_id: str, values: dict) -> bool:
    """CHECKED_IN -> CHECKED_OUT, compare-and-swap on status"""
    values = dict(values, status=AttendanceStatusEnum.CHECKED_OUT)
    return await _conditional_update(
        db, record_id, [DailyAttendance.status == AttendanceStatusEnum.CHECKED_IN], values
    )


async def append_location(db: AsyncSession, record_id: str, expected_version: int,
                          path_data: list, total_distance: float, last_location_update: datetime) -> bool:
    """Replace the path if the record is still CHECKED_IN and unchanged since it was read"""
    return await _conditional_update(
        db,
        record_id,
        [
            DailyAttendance.status == AttendanceStatusEnum.CHECKED_IN,
            DailyAttendance.version == expected_version,
        ],
        {
            "path_data": path_data,
            "total_distance": total_distance,
            "last_location_update": last_location_update,
        },
    )


async def set_selfie_path(db: AsyncSession, record_id: str, column: str, object_path: str) -> bool:
    return await _conditional_update(db, record_id, [], {column: object_path})


async def update_verification(db: AsyncSession, record_id: str, values: dict) -> bool:
    return await _conditional_update(db, record_id, [], values)


def _apply_filters(query, filters: AttendanceListFilters):
    if filters.day:
        query = query.where(DailyAttendance.attendance_date == filters.day)
    else:
        if filters.dateFrom:
            query = query.where(DailyAttendance.attendance_date >= filters.dateFrom)
        if filters.dateTo:
            query = query.where(DailyAttendance.attendance_date <= filters.dateTo)
    if filters.status:
        query = query.where(DailyAttendance.status == filters.status)
    if filters.verificationStatus:
        query = query.where(DailyAttendance.verification_status == filters.verificationStatus)
    if filters.employeeId is not None:
        query = query.where(DailyAttendance.employee_id == filters.employeeId)
    return query


async def list_records(db: AsyncSession, filters: AttendanceListFilters) -> Tuple[List[DailyAttendance], int]:
    """Newest day first; id breaks ties so page boundaries never shift"""
    count_query = _apply_filters(select(func.count(DailyAttendance.id)), filters)
    total = (await db.execute(count_query)).scalar() or 0

    offset = (filters.page - 1) * filters.limit
    query = _apply_filters(
        select(DailyAttendance).options(selectinload(DailyAttendance.employee)),
        filters,
    )
    query = query.order_by(
        desc(DailyAttendance.attendance_date),
        desc(DailyAttendance.id),
    ).offset(offset).limit(filters.limit)

    result = await db.execute(query)
    return result.scalars().all(), total
