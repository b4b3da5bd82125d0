from pydantic import BaseModel, Field
from typing import List

class FaceEnrollmentRequest(BaseModel):
    """Yuz embeddingini ro'yxatga olish uchun schema"""
    faceEmbedding: List[float] = Field(..., min_length=1, description="Face embedding generated on the device")

class FaceEnrollmentResult(BaseModel):
    """Enrollment natijasi"""
    success: bool
    message: str
    employee_id: int
    dimensions: int
