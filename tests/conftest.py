import asyncio
import base64
import io
import os
import tempfile

import numpy as np
import pytest
from PIL import Image

_TEST_DIR = tempfile.mkdtemp(prefix="attendance-tests-")

# Settings are read at import time, so point them at a scratch area first.
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'attendance_test.db')}"
os.environ["STORAGE_PATH"] = os.path.join(_TEST_DIR, "uploads")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENV"] = "test"

from app.core.database import AsyncSessionLocal, Base, engine  # noqa: E402
from app.core.security import ROLE_ADMIN, ROLE_EMPLOYEE, ROLE_REVIEWER, decode_session_token, issue_session_token  # noqa: E402
from app.crud import employee as crud_employee  # noqa: E402
from app.schemas.employee import EmployeeCreate  # noqa: E402
from app.services.file_service import selfie_storage  # noqa: E402


def unit_embedding(seed: int, size: int = 128) -> list:
    rng = np.random.default_rng(seed)
    vector = rng.normal(size=size)
    return (vector / np.linalg.norm(vector)).tolist()


def make_selfie(size=(64, 64), color=(200, 150, 120)) -> str:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, "JPEG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


async def _reset_schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def _create_employee(full_name: str, embedding):
    async with AsyncSessionLocal() as db:
        employee = await crud_employee.create_employee(db, EmployeeCreate(full_name=full_name, position="Field officer"))
        if embedding is not None:
            await crud_employee.set_face_embedding(db, employee.id, embedding)
        return employee.id


@pytest.fixture(autouse=True)
def fresh_db():
    asyncio.run(_reset_schema())
    yield


@pytest.fixture(autouse=True)
def storage(tmp_path, monkeypatch):
    monkeypatch.setattr(selfie_storage, "root", str(tmp_path / "uploads"))
    return selfie_storage


@pytest.fixture()
def selfie():
    return make_selfie()


@pytest.fixture()
def embedding():
    return unit_embedding(7)


@pytest.fixture()
def employee_id(embedding):
    return asyncio.run(_create_employee("Asha Verma", embedding))


@pytest.fixture()
def other_employee_id():
    return asyncio.run(_create_employee("Ravi Kumar", unit_embedding(11)))


@pytest.fixture()
def employee_session(employee_id):
    token = issue_session_token(f"user-{employee_id}", role=ROLE_EMPLOYEE, employee_id=employee_id)
    return decode_session_token(token)


@pytest.fixture()
def reviewer_session():
    return decode_session_token(issue_session_token("reviewer-1", role=ROLE_REVIEWER))


@pytest.fixture()
def admin_headers():
    return {"Authorization": f"Bearer {issue_session_token('admin-1', role=ROLE_ADMIN)}"}


@pytest.fixture()
def reviewer_headers():
    return {"Authorization": f"Bearer {issue_session_token('reviewer-1', role=ROLE_REVIEWER)}"}


@pytest.fixture()
def employee_headers(employee_id):
    token = issue_session_token(f"user-{employee_id}", role=ROLE_EMPLOYEE, employee_id=employee_id)
    return {"Authorization": f"Bearer {token}"}
