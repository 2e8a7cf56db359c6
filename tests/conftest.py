# tests/conftest.py
import os
import tempfile

# Point settings at a throwaway SQLite file before the app is imported
_DB_DIR = tempfile.mkdtemp(prefix="tutor_sessions_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["JWT_SECRET"] = "test-secret-key"
os.environ["ENABLE_GOOGLE_CALENDAR"] = "false"

import pytest  # noqa: E402

from tutor_sessions.core.security import create_access_token, get_password_hash  # noqa: E402
from tutor_sessions.db.session import SessionLocal, engine  # noqa: E402
from tutor_sessions.models import Base, User  # noqa: E402
from tutor_sessions.models.user import UserRole  # noqa: E402
from tutor_sessions.services.calendar_service import CalendarService  # noqa: E402
from tutor_sessions.services.google_calendar_client import CalendarEventRef  # noqa: E402

PASSWORD = "password123"
_PASSWORD_HASH = get_password_hash(PASSWORD)


class FakeCalendarService(CalendarService):
    """
    In-memory calendar. `fail_create` / `fail_delete` map a user id to the
    exception that user's calendar should raise.
    """

    def __init__(self):
        self.events: dict[str, str] = {}  # event_id -> owner id
        self.fail_create: dict[str, Exception] = {}
        self.fail_delete: dict[str, Exception] = {}
        self.created: list[dict] = []
        self.delete_calls: list[str] = []
        self._counter = 0

    def create_event(self, owner, *, title, description, start_time, end_time, attendee_email):
        if owner.id in self.fail_create:
            raise self.fail_create[owner.id]
        self._counter += 1
        event_id = f"evt-{owner.role.lower()}-{self._counter}"
        self.events[event_id] = owner.id
        self.created.append(
            {
                "owner_id": owner.id,
                "event_id": event_id,
                "title": title,
                "description": description,
                "start_time": start_time,
                "end_time": end_time,
                "attendee_email": attendee_email,
            }
        )
        return CalendarEventRef(
            event_id=event_id,
            meet_link=f"https://meet.google.com/fake-{self._counter}",
            html_link=f"https://calendar.google.com/event?eid={event_id}",
        )

    def delete_event(self, owner, event_id):
        self.delete_calls.append(event_id)
        if owner.id in self.fail_delete:
            raise self.fail_delete[owner.id]
        # Deleting an event that is already gone is not an error
        self.events.pop(event_id, None)


def _make_user(
    db,
    role: UserRole,
    email: str,
    *,
    name: str | None = None,
    connected: bool = False,
    active: bool = True,
) -> User:
    user = User(
        email=email,
        password_hash=_PASSWORD_HASH,
        role=role.value,
        name=name,
        is_active=active,
        google_calendar_connected=connected,
        google_access_token="access-token" if connected else None,
        google_refresh_token="refresh-token" if connected else None,
        google_email=email if connected else None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _auth_headers(user: User) -> dict:
    token = create_access_token({"sub": user.id, "email": user.email, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def admin(db) -> User:
    return _make_user(db, UserRole.ADMIN, "admin@example.com", name="Admin")


@pytest.fixture
def tutor(db) -> User:
    return _make_user(db, UserRole.TUTOR, "tutor@example.com", name="Tina Tutor", connected=True)


@pytest.fixture
def student(db) -> User:
    return _make_user(db, UserRole.STUDENT, "student@example.com", name="Sam Student", connected=True)


@pytest.fixture
def fake_calendar() -> FakeCalendarService:
    return FakeCalendarService()


@pytest.fixture
def user_factory(db):
    """`user_factory(UserRole.TUTOR, "x@example.com", connected=True)`"""

    def factory(role: UserRole, email: str, **kwargs) -> User:
        return _make_user(db, role, email, **kwargs)

    return factory


@pytest.fixture
def auth_headers():
    return _auth_headers
