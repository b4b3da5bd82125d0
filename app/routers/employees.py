from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from app.crud import employee as crud_employee
from app.schemas import employee as schema_employee
from app.schemas.face_id import FaceEnrollmentRequest, FaceEnrollmentResult
from app.core.database import get_db
from app.core.exceptions import EmployeeNotFound, ValidationFailed
from app.core.security import SessionContext, ensure_admin, ensure_can_access_employee, get_session
from app.services import face_id

router = APIRouter(prefix="/employees", tags=["Employees"])


@router.post("", response_model=schema_employee.Employee)
async def create_employee(
    employee: schema_employee.EmployeeCreate,
    session: SessionContext = Depends(get_session),
    db: AsyncSession = Depends(get_db)
):
    """Yangi xodim yaratish"""
    ensure_admin(session)
    return await crud_employee.create_employee(db, employee)


@router.get("/{employee_id}", response_model=schema_employee.Employee)
async def get_employee(
    employee_id: int,
    session: SessionContext = Depends(get_session),
    db: AsyncSession = Depends(get_db)
):
    """ID bo'yicha xodimni olish"""
    ensure_can_access_employee(session, employee_id)
    employee = await crud_employee.get_employee_by_id(db, employee_id)
    if not employee:
        raise EmployeeNotFound()
    return employee


@router.post("/{employee_id}/face", response_model=FaceEnrollmentResult)
async def enroll_face(
    employee_id: int,
    request: FaceEnrollmentRequest,
    session: SessionContext = Depends(get_session),
    db: AsyncSession = Depends(get_db)
):
    """
    Xodim yuzini ro'yxatga olish.

    The embedding is computed on the device; it replaces any earlier enrollment.
    """
    ensure_can_access_employee(session, employee_id)

    error = face_id.validate_embedding(request.faceEmbedding)
    if error:
        raise ValidationFailed(error)

    employee = await crud_employee.set_face_embedding(db, employee_id, request.faceEmbedding)
    if not employee:
        raise EmployeeNotFound()

    return FaceEnrollmentResult(
        success=True,
        message=f"Face enrolled for {employee.full_name}",
        employee_id=employee.id,
        dimensions=len(request.faceEmbedding),
    )
