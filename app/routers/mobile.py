from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.database import get_db
from app.core.security import SessionContext, get_employee_session, get_session
from app.schemas.attendance import (
    ApiResponse,
    CheckInRequest,
    CheckOutRequest,
    LocationUpdateRequest,
)
from app.services import attendance as attendance_service
from app.services import reports

router = APIRouter(prefix="/mobile/attendance", tags=["Mobile App"])


@router.post("/check-in", response_model=ApiResponse)
async def check_in(
    request: CheckInRequest,
    session: SessionContext = Depends(get_employee_session),
    db: AsyncSession = Depends(get_db)
):
    """Open today's attendance record with location, selfie and face evidence"""
    outcome = await attendance_service.check_in(db, session.employee_id, request)
    return ApiResponse(
        success=True,
        message=outcome.message,
        data=reports.attendance_result(outcome.record),
        warnings=outcome.warnings,
    )


@router.post("/check-out", response_model=ApiResponse)
async def check_out(
    request: CheckOutRequest,
    session: SessionContext = Depends(get_employee_session),
    db: AsyncSession = Depends(get_db)
):
    """
    Close today's record.

    ``method`` MANUAL (or absent) is a regular check-out with selfie; any other
    method is an emergency check-out that requires a reason.
    """
    outcome = await attendance_service.check_out(db, session.employee_id, request)
    return ApiResponse(
        success=True,
        message=outcome.message,
        data=reports.attendance_result(outcome.record, emergency=outcome.emergency),
        warnings=outcome.warnings,
    )


@router.post("/{attendance_id}/location-update", response_model=ApiResponse)
async def location_update(
    attendance_id: str,
    request: LocationUpdateRequest,
    session: SessionContext = Depends(get_session),
    db: AsyncSession = Depends(get_db)
):
    appended = await attendance_service.update_location_tracking(db, attendance_id, request, session)
    return ApiResponse(
        success=True,
        message="Location updated" if appended else "Stale location sample ignored",
        data={"appended": appended},
    )


@router.get("/status", response_model=ApiResponse)
async def get_status(
    session: SessionContext = Depends(get_employee_session),
    db: AsyncSession = Depends(get_db)
):
    status = await reports.get_status(db, session.employee_id)
    return ApiResponse(success=True, data=status)


@router.get("/history", response_model=ApiResponse)
async def get_history(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    session: SessionContext = Depends(get_employee_session),
    db: AsyncSession = Depends(get_db)
):
    history = await reports.list_history(db, session.employee_id, page=page, limit=limit)
    return ApiResponse(success=True, data=history)
