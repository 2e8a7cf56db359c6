# tutor_sessions/routers/auth.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tutor_sessions.core.exceptions import LMSError
from tutor_sessions.core.security import create_access_token
from tutor_sessions.db.session import get_db
from tutor_sessions.dependencies.auth import get_current_user
from tutor_sessions.models.user import User
from tutor_sessions.schemas.auth import LoginRequest, LoginResponse, UserOut
from tutor_sessions.services.user_service import authenticate_user

router = APIRouter(prefix="/auth", tags=["auth"])


def _user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        email=user.email,
        role=user.role,
        name=user.name,
        courseType=user.course_type,
        googleCalendarConnected=user.google_calendar_connected,
    )


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    """
    Exchange email + password for a bearer token.
    """
    try:
        user = authenticate_user(db, payload.email, payload.password)
    except LMSError as e:
        raise e.to_http_exception()

    token = create_access_token({"sub": user.id, "email": user.email, "role": user.role})
    return LoginResponse(token=token, user=_user_out(user))


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return _user_out(user)
