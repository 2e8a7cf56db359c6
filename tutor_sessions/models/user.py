# tutor_sessions/models/user.py
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, String, Text

from tutor_sessions.models.base import Base


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    TUTOR = "TUTOR"
    STUDENT = "STUDENT"


class CourseType(str, Enum):
    PTE = "PTE"
    NAATI = "NAATI"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)

    # Stored as plain strings; UserRole / CourseType are used in Python
    role = Column(String(16), nullable=False, index=True)
    course_type = Column(String(16), nullable=True)

    phone = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime, nullable=True)

    # Google Calendar linkage (written by the OAuth callback and token refresh)
    google_access_token = Column(Text, nullable=True)
    google_refresh_token = Column(Text, nullable=True)
    google_token_expiry = Column(DateTime, nullable=True)
    google_calendar_connected = Column(Boolean, nullable=False, default=False)
    google_email = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    @property
    def calendar_email(self) -> str:
        """Address to invite: the connected Google account, else the login email."""
        return self.google_email or self.email
