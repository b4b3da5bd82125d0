from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class EmployeeBase(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=100)
    position: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)


class EmployeeCreate(EmployeeBase):
    pass


class Employee(EmployeeBase):
    """Xodim ma'lumotlari; the enrolled embedding itself is never returned"""
    id: int
    uuid: str
    is_active: bool
    has_face_enrolled: bool = False
    created_at: datetime

    class Config:
        from_attributes = True
