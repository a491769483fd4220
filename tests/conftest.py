"""Shared fixtures: required settings and a throwaway SQLite database per test."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("MIDTRANS_SERVER_KEY", "SB-Mid-server-test-key")
os.environ.setdefault("AUTH_SECRET_KEY", "test-auth-secret-key-0123456789")
os.environ.setdefault("APP_ENV", "test")

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    import app.models  # noqa: F401  (registers tables)
    from app.db.base import Base

    eng = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    # pysqlite: let SQLAlchemy own BEGIN so SAVEPOINTs work, and take the
    # write lock up front so concurrent writers queue instead of failing.
    @event.listens_for(eng, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def make_user(db):
    from app.models.user import User

    counter = {"n": 0}

    def _make(role: str = "student", email: str | None = None, full_name: str = "Siti Rahma") -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=email or f"student{n}@example.com",
            username=f"student{n}",
            full_name=full_name,
            role=role,
        )
        db.add(user)
        db.flush()
        return user

    return _make


@pytest.fixture
def make_course(db):
    from app.models.course import Course

    def _make(title: str = "Data Engineering 101", price=Decimal("150000"), capacity: int = 100) -> Course:
        course = Course(title=title, price=price, capacity=capacity, total_enrollments=0)
        db.add(course)
        db.flush()
        return course

    return _make


@pytest.fixture
def make_enrollment(db):
    from app.models.enrollment import Enrollment

    def _make(user, course, status: str = "active", progress: int = 0) -> Enrollment:
        enrollment = Enrollment(user_id=user.id, course_id=course.id, status=status, progress=progress)
        db.add(enrollment)
        db.flush()
        return enrollment

    return _make
