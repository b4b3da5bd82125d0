import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqladmin import Admin, ModelView
from app.core.config import LOG_LEVEL, get_cors_origins
from app.core.database import Base, engine
from app.core.exceptions import AttendanceError
from app.middlewares.logging import LoggingMiddleware
from app.models.employee import Employee
from app.models.attendance import DailyAttendance
from app.routers import employees, attendance as attendance_router, mobile

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Field Attendance API",
    description="Check-in/check-out with selfie and face verification, location tracking and review",
    version="1.0.0"
)

# SQLAdmin
admin = Admin(app, engine)


class EmployeeAdmin(ModelView, model=Employee):
    column_list = [Employee.id, Employee.full_name, Employee.position, Employee.phone, Employee.is_active]
    column_searchable_list = [Employee.full_name, Employee.phone]
    column_sortable_list = [Employee.id, Employee.full_name, Employee.phone]
    column_details_exclude_list = [Employee.face_embedding]
    form_excluded_columns = [Employee.face_embedding, Employee.attendance_records]
    column_default_sort = [(Employee.created_at, True)]
    name = "Employee"
    name_plural = "Employees"
    icon = "fa-solid fa-user"


class DailyAttendanceAdmin(ModelView, model=DailyAttendance):
    column_list = [
        DailyAttendance.attendance_date, DailyAttendance.employee_id, DailyAttendance.status,
        DailyAttendance.check_in_time, DailyAttendance.check_out_time, DailyAttendance.work_hours,
        DailyAttendance.verification_status, DailyAttendance.emergency_checkout,
    ]
    column_sortable_list = [DailyAttendance.attendance_date, DailyAttendance.employee_id, DailyAttendance.check_in_time]
    column_default_sort = [(DailyAttendance.attendance_date, True)]  # Newest day first
    column_details_exclude_list = [DailyAttendance.path_data]
    can_create = False
    can_delete = False
    name = "Attendance"
    name_plural = "Attendance records"
    icon = "fa-solid fa-clock"


admin.add_view(EmployeeAdmin)
admin.add_view(DailyAttendanceAdmin)

app.add_middleware(LoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AttendanceError)
async def attendance_error_handler(request: Request, exc: AttendanceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message, "error_code": exc.error_code},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Request validation failed"
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": message, "error_code": "VALIDATION_ERROR"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error", "error_code": "SYSTEM_ERROR"},
    )


# Startup event -> DB yaratish
@app.on_event("startup")
async def startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Routers
app.include_router(employees.router)
app.include_router(attendance_router.router)
app.include_router(mobile.router)


@app.get("/")
async def root():
    return {
        "message": "Field Attendance API",
        "docs": "/docs",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "field-attendance"}
