from pydantic import BaseModel, Field, Discriminator, Tag, field_validator
from datetime import datetime, date
from typing import Optional, List, Any, Literal, Union, Annotated
from app.models.attendance import (
    AttendanceStatusEnum,
    VerificationStatusEnum,
    CheckOutMethodEnum,
)


class LocationData(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)
    timestamp: Optional[datetime] = None
    address: Optional[str] = None


class DeviceInfo(BaseModel):
    batteryLevel: Optional[float] = Field(None, ge=0, le=100)
    platform: Optional[str] = None
    version: Optional[str] = None
    model: Optional[str] = None


class FaceQuality(BaseModel):
    """Upstream quality gate outcome (blur, lighting, face count)"""
    passed: bool = True
    warnings: List[str] = []


class FaceEvidence(BaseModel):
    """Face embedding computed on the device plus its quality gate result"""
    faceEmbedding: Optional[List[float]] = None
    faceQuality: Optional[FaceQuality] = None


class CheckInRequest(FaceEvidence):
    location: LocationData
    selfie: str = Field(..., min_length=1, description="Base64 encoded image")
    timestamp: datetime
    deviceInfo: Optional[DeviceInfo] = None


class ManualCheckOutRequest(FaceEvidence):
    method: Literal["MANUAL"] = "MANUAL"
    location: LocationData
    selfie: str = Field(..., min_length=1, description="Base64 encoded image")
    timestamp: datetime
    reason: Optional[str] = None
    deviceInfo: Optional[DeviceInfo] = None


class EmergencyCheckOutRequest(FaceEvidence):
    method: Literal["AUTOMATIC", "APP_CLOSED", "BATTERY_DRAIN", "FORCE_CLOSE", "ADMIN_OVERRIDE"]
    reason: str = Field(..., min_length=1)
    timestamp: datetime
    lastLocationData: Optional[LocationData] = None
    selfieData: Optional[str] = None
    deviceInfo: Optional[DeviceInfo] = None

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Reason is required for emergency check-out")
        return value.strip()


def _checkout_kind(value: Any) -> str:
    """MANUAL (or no method at all) is a regular check-out, anything else is emergency"""
    if isinstance(value, dict):
        method = value.get("method")
    else:
        method = getattr(value, "method", None)
    if method is None or method == CheckOutMethodEnum.MANUAL.value:
        return "manual"
    return "emergency"


CheckOutRequest = Annotated[
    Union[
        Annotated[ManualCheckOutRequest, Tag("manual")],
        Annotated[EmergencyCheckOutRequest, Tag("emergency")],
    ],
    Discriminator(_checkout_kind),
]


class LocationUpdateRequest(BaseModel):
    location: LocationData
    batteryLevel: Optional[float] = Field(None, ge=0, le=100)
    timestamp: datetime


class UpdateVerificationRequest(BaseModel):
    verificationStatus: VerificationStatusEnum
    verificationNotes: Optional[str] = None


class PathPoint(BaseModel):
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    batteryLevel: Optional[float] = None
    timestamp: datetime


class AttendanceResult(BaseModel):
    """``data`` payload of check-in / check-out responses"""
    attendanceId: str
    timestamp: datetime
    status: AttendanceStatusEnum
    checkInTime: Optional[datetime] = None
    checkOutTime: Optional[datetime] = None
    workHours: Optional[float] = None
    verificationStatus: VerificationStatusEnum
    emergencyCheckout: bool = False


class AttendanceStatusResponse(BaseModel):
    employeeId: int
    date: date
    status: AttendanceStatusEnum
    requiresCheckOut: bool
    currentAttendanceId: Optional[str] = None
    checkInTime: Optional[datetime] = None
    checkOutTime: Optional[datetime] = None
    workHours: Optional[float] = None
    totalDistance: float = 0.0
    lastLocationUpdate: Optional[datetime] = None
    batteryLevel: Optional[float] = None
    verificationStatus: Optional[VerificationStatusEnum] = None


class AttendanceRecord(BaseModel):
    id: str
    employeeId: int
    employeeName: Optional[str] = None
    date: date
    status: AttendanceStatusEnum
    checkInTime: Optional[datetime] = None
    checkOutTime: Optional[datetime] = None
    checkInLocation: Optional[LocationData] = None
    checkOutLocation: Optional[LocationData] = None
    checkInSelfiePath: Optional[str] = None
    checkOutSelfiePath: Optional[str] = None
    checkOutMethod: Optional[CheckOutMethodEnum] = None
    checkOutReason: Optional[str] = None
    emergencyCheckout: bool = False
    verificationStatus: VerificationStatusEnum
    verificationNotes: Optional[str] = None
    verifiedBy: Optional[str] = None
    verifiedAt: Optional[datetime] = None
    workHours: Optional[float] = None
    locationPath: List[PathPoint] = []
    totalDistance: float = 0.0
    device: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime


class AttendanceListFilters(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)
    day: Optional[date] = None
    dateFrom: Optional[date] = None
    dateTo: Optional[date] = None
    status: Optional[AttendanceStatusEnum] = None
    verificationStatus: Optional[VerificationStatusEnum] = None
    employeeId: Optional[int] = None


class AttendanceListResponse(BaseModel):
    records: List[AttendanceRecord]
    page: int
    limit: int
    total: int
    totalPages: int
    hasMore: bool


class SignedImageUrl(BaseModel):
    signedUrl: str
    expiresAt: datetime


class ApiResponse(BaseModel):
    """Envelope shared by every attendance endpoint"""
    success: bool
    message: Optional[str] = None
    data: Optional[Any] = None
    warnings: List[str] = []
