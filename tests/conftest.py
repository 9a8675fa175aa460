import os
import tempfile
from pathlib import Path
from types import SimpleNamespace

# Settings are read at import time, so point them at a scratch area first.
_TMP = Path(tempfile.mkdtemp(prefix="evalify-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["UPLOAD_DIR"] = str(_TMP / "uploads")
os.environ["AUTO_SUBMIT_ENABLED"] = "false"
os.environ["ENV"] = "dev"

import pytest
from sqlmodel import Session

from evalify import models
from evalify.database import create_db_and_tables, drop_db_and_tables, engine
from evalify.services.auth import create_access_token, hash_password
from evalify.utils.rate_limit import limiter

PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def reset_db():
    """Fresh tables and an empty rate limiter for every test."""
    drop_db_and_tables()
    create_db_and_tables()
    limiter.reset()
    yield


@pytest.fixture
def session():
    with Session(engine) as s:
        yield s


@pytest.fixture
def make_user(session):
    counter = {"n": 0}

    def _make(role=models.Role.STUDENT, email=None, status=models.UserStatus.ACTIVE, name=None):
        counter["n"] += 1
        n = counter["n"]
        user = models.User(
            name=name or f"{role.value.title()} {n}",
            email=email or f"{role.value.lower()}{n}@example.edu",
            profile_id=f"{role.value[:3]}-{n:04d}",
            password_hash=hash_password(PASSWORD),
            role=role,
            status=status,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


def auth_headers(user: models.User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def headers():
    return auth_headers


@pytest.fixture
def campus(session, make_user):
    """A department, semester and course with one instructor and one enrolled student."""
    dept = models.Department(name="Computer Science")
    session.add(dept)
    session.commit()
    semester = models.Semester(name="Odd", year=2025, department_id=dept.id)
    session.add(semester)
    session.commit()
    course = models.Course(name="Data Structures", code="CS201", semester_id=semester.id)
    session.add(course)
    session.commit()
    faculty = make_user(models.Role.FACULTY)
    student = make_user(models.Role.STUDENT)
    session.add(models.CourseInstructor(course_id=course.id, instructor_id=faculty.id))
    session.add(models.CourseStudent(course_id=course.id, student_id=student.id))
    session.commit()
    return SimpleNamespace(
        department_id=dept.id,
        semester_id=semester.id,
        course_id=course.id,
        faculty=faculty,
        student=student,
    )
