# tutor_sessions/services/user_service.py
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from tutor_sessions.core.exceptions import (
    AccountDeactivated,
    AuthenticationFailed,
    ValidationFailed,
)
from tutor_sessions.core.security import get_password_hash, verify_password
from tutor_sessions.models.user import CourseType, User, UserRole

logger = logging.getLogger(__name__)


def create_user(
    db: Session,
    *,
    email: str,
    password: str,
    role: UserRole,
    name: Optional[str] = None,
    phone: Optional[str] = None,
    course_type: Optional[CourseType] = None,
) -> User:
    """
    Create a user with a bcrypt-hashed password.

    Used by the bootstrap script and tests; the admin user-management UI is
    out of scope for this service.
    """
    email = email.strip().lower()
    if db.query(User).filter_by(email=email).first():
        raise ValidationFailed(f"A user with email {email} already exists")

    user = User(
        email=email,
        password_hash=get_password_hash(password),
        role=UserRole(role).value,
        name=name,
        phone=phone,
        course_type=CourseType(course_type).value if course_type else None,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Created %s user %s", user.role, user.id)
    return user


def authenticate_user(db: Session, email: str, password: str) -> User:
    user = db.query(User).filter_by(email=email.strip().lower()).first()
    if not user or not verify_password(password, user.password_hash):
        logger.info("Failed login attempt for %s", email)
        raise AuthenticationFailed("Invalid credentials")

    if not user.is_active:
        raise AccountDeactivated()

    user.last_login = datetime.utcnow()
    db.commit()
    db.refresh(user)
    return user


def get_user(db: Session, user_id: str) -> Optional[User]:
    return db.get(User, user_id)


def get_active_tutor(db: Session, tutor_id: str) -> Optional[User]:
    return (
        db.query(User)
        .filter_by(id=tutor_id, role=UserRole.TUTOR.value, is_active=True)
        .first()
    )
