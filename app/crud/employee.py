from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from typing import List, Optional
from app.schemas import employee as employee_schema
from app.models.employee import Employee


async def create_employee(db: AsyncSession, employee: employee_schema.EmployeeCreate) -> Employee:
    db_employee = Employee(**employee.model_dump())
    db.add(db_employee)
    await db.commit()
    await db.refresh(db_employee)
    return db_employee


async def get_employee_by_id(db: AsyncSession, employee_id: int) -> Optional[Employee]:
    result = await db.execute(select(Employee).where(Employee.id == employee_id))
    return result.scalar_one_or_none()


async def set_face_embedding(db: AsyncSession, employee_id: int, embedding: List[float]) -> Optional[Employee]:
    """Xodimning yuz embeddingini saqlash (eskisini almashtiradi)"""
    db_employee = await get_employee_by_id(db, employee_id)
    if not db_employee:
        return None

    db_employee.face_embedding = [float(value) for value in embedding]
    await db.commit()
    await db.refresh(db_employee)
    return db_employee
