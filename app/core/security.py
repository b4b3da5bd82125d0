import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import Header

from app.core.config import SECRET_KEY, SESSION_TOKEN_TTL_SECONDS
from app.core.exceptions import Forbidden, NotAuthenticated

ROLE_EMPLOYEE = "employee"
ROLE_REVIEWER = "reviewer"
ROLE_ADMIN = "admin"
ROLES = (ROLE_EMPLOYEE, ROLE_REVIEWER, ROLE_ADMIN)
REVIEW_ROLES = (ROLE_REVIEWER, ROLE_ADMIN)


@dataclass(frozen=True)
class SessionContext:
    """Caller identity resolved once per request and passed to the services."""
    subject: str
    role: str
    expires_at: int
    employee_id: Optional[int] = None

    @property
    def is_reviewer(self) -> bool:
        return self.role in REVIEW_ROLES


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def sign_value(value: str) -> str:
    digest = hmac.new(
        SECRET_KEY.encode("utf-8"),
        value.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


def issue_session_token(subject: str, role: str = ROLE_EMPLOYEE,
                        employee_id: Optional[int] = None,
                        ttl_seconds: int = SESSION_TOKEN_TTL_SECONDS) -> str:
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    payload = {
        "sub": subject,
        "role": role,
        "emp": employee_id,
        "exp": int(time.time()) + ttl_seconds,
    }
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    payload_b64 = _b64url_encode(payload_json.encode("utf-8"))
    return f"{payload_b64}.{sign_value(payload_b64)}"


def decode_session_token(token: str) -> Optional[SessionContext]:
    if not token or "." not in token:
        return None

    payload_b64, signature = token.split(".", 1)
    if not hmac.compare_digest(signature, sign_value(payload_b64)):
        return None

    try:
        payload = json.loads(_b64url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None

    sub = payload.get("sub")
    role = payload.get("role")
    exp = payload.get("exp")
    employee_id = payload.get("emp")
    if not isinstance(sub, str) or not sub.strip():
        return None
    if role not in ROLES or not isinstance(exp, int):
        return None
    if exp < int(time.time()):
        return None
    if employee_id is not None and not isinstance(employee_id, int):
        return None

    return SessionContext(subject=sub, role=role, expires_at=exp, employee_id=employee_id)


async def get_session(authorization: Optional[str] = Header(None)) -> SessionContext:
    """FastAPI dependency: resolve the bearer token into a SessionContext."""
    if not authorization or not authorization.startswith("Bearer "):
        raise NotAuthenticated("Missing or invalid authorization header")
    session = decode_session_token(authorization[len("Bearer "):].strip())
    if session is None:
        raise NotAuthenticated("Invalid or expired token")
    return session


async def get_employee_session(authorization: Optional[str] = Header(None)) -> SessionContext:
    session = await get_session(authorization)
    if session.employee_id is None:
        raise Forbidden("Session is not linked to an employee")
    return session


def ensure_can_review(session: SessionContext) -> None:
    if not session.is_reviewer:
        raise Forbidden("You do not have permission to update attendance verification")


def ensure_can_access_employee(session: SessionContext, employee_id: int) -> None:
    if session.is_reviewer:
        return
    if session.employee_id != employee_id:
        raise Forbidden("You do not have permission to access this attendance record")


def ensure_admin(session: SessionContext) -> None:
    if session.role != ROLE_ADMIN:
        raise Forbidden("Only administrators can manage employees")
