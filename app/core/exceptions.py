"""
Attendance domain errors.

Every error carries the machine readable ``error_code`` returned to the mobile
and web clients and the HTTP status class the boundary maps it to.
"""


class AttendanceError(Exception):
    status_code = 500
    error_code = "SYSTEM_ERROR"
    default_message = "Unexpected error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(AttendanceError):
    status_code = 400
    error_code = "VALIDATION_ERROR"
    default_message = "Request validation failed"


class InvalidCheckOutTime(ValidationFailed):
    error_code = "INVALID_CHECKOUT_TIME"
    default_message = "Check-out time must be after check-in time"


class NotAuthenticated(AttendanceError):
    status_code = 401
    error_code = "NOT_AUTHENTICATED"
    default_message = "Missing or invalid session"


class Forbidden(AttendanceError):
    status_code = 403
    error_code = "FORBIDDEN"
    default_message = "You do not have permission to perform this action"


class RecordNotFound(AttendanceError):
    status_code = 404
    error_code = "RECORD_NOT_FOUND"
    default_message = "Attendance record not found"


class EmployeeNotFound(AttendanceError):
    status_code = 404
    error_code = "EMPLOYEE_NOT_FOUND"
    default_message = "Employee not found"


class AlreadyCheckedIn(AttendanceError):
    status_code = 409
    error_code = "ALREADY_CHECKED_IN"
    default_message = "Employee already checked in today"


class AlreadyCheckedOut(AttendanceError):
    status_code = 409
    error_code = "ALREADY_CHECKED_OUT"
    default_message = "Employee already checked out today"


class NoActiveCheckIn(AttendanceError):
    status_code = 409
    error_code = "NO_ACTIVE_CHECK_IN"
    default_message = "No check-in record found for today"


class RecordNotActive(AttendanceError):
    status_code = 409
    error_code = "RECORD_NOT_ACTIVE"
    default_message = "Attendance record is not checked in"


class UpdateConflict(AttendanceError):
    status_code = 409
    error_code = "UPDATE_CONFLICT"
    default_message = "Attendance record changed concurrently, please retry"
