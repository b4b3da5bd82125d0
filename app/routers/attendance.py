import os
from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date
from typing import Optional
from app.core.database import get_db
from app.core.exceptions import Forbidden, RecordNotFound
from app.core.security import SessionContext, get_session
from app.models.attendance import AttendanceStatusEnum, VerificationStatusEnum
from app.schemas.attendance import ApiResponse, AttendanceListFilters, UpdateVerificationRequest
from app.services import attendance as attendance_service
from app.services import reports
from app.services.file_service import selfie_storage

router = APIRouter(prefix="/attendance", tags=["Attendance"])


@router.get("", response_model=ApiResponse)
async def list_attendance(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    day: Optional[date] = Query(None, alias="date"),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    status: Optional[AttendanceStatusEnum] = Query(None),
    verification_status: Optional[VerificationStatusEnum] = Query(None, alias="verificationStatus"),
    employee_id: Optional[int] = Query(None, alias="employeeId"),
    session: SessionContext = Depends(get_session),
    db: AsyncSession = Depends(get_db)
):
    """Davomat yozuvlari ro'yxati (admin panel uchun)"""
    filters = AttendanceListFilters(
        page=page,
        limit=limit,
        day=day,
        dateFrom=date_from,
        dateTo=date_to,
        status=status,
        verificationStatus=verification_status,
        employeeId=employee_id,
    )
    result = await reports.list_records(db, filters, session)
    return ApiResponse(success=True, data=result)


@router.put("/{record_id}/verify", response_model=ApiResponse)
async def verify_attendance(
    record_id: str,
    request: UpdateVerificationRequest,
    session: SessionContext = Depends(get_session),
    db: AsyncSession = Depends(get_db)
):
    record = await attendance_service.update_verification(
        db, record_id, request.verificationStatus, request.verificationNotes, session
    )
    return ApiResponse(
        success=True,
        message="Verification status updated",
        data=reports.serialize_record(record),
    )


@router.get("/image", response_model=ApiResponse)
async def get_image_url(
    path: str = Query(..., min_length=1),
    session: SessionContext = Depends(get_session),
    db: AsyncSession = Depends(get_db)
):
    """Selfie uchun vaqtinchalik imzolangan URL"""
    signed = await reports.get_image_url(db, path, session)
    return ApiResponse(success=True, data=signed)


@router.get("/image/raw")
async def get_image_raw(
    path: str = Query(...),
    expires: int = Query(...),
    signature: str = Query(...),
):
    """Serve a selfie behind a signed URL; the signature is the only credential"""
    if not selfie_storage.verify_signature(path, expires, signature):
        raise Forbidden("Image link is invalid or has expired")

    file_path = selfie_storage.full_path(path)
    if file_path is None or not os.path.isfile(file_path):
        raise RecordNotFound("Image not found")
    return FileResponse(file_path, media_type="image/jpeg", headers={"Cache-Control": "no-store"})
