from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON
from sqlalchemy.orm import relationship
import uuid
from app.core.database import Base
from app.utils.timezone import utc_now

class Employee(Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String, unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    full_name = Column(String, nullable=False)
    position = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    face_embedding = Column(JSON, nullable=True)  # Enrolled face embedding (list of floats)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    # Relationship
    attendance_records = relationship("DailyAttendance", back_populates="employee")

    @property
    def has_face_enrolled(self) -> bool:
        return bool(self.face_embedding)
