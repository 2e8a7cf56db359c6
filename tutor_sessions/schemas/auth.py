# tutor_sessions/schemas/auth.py
from typing import Optional

from pydantic import BaseModel


class LoginRequest(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    id: str
    email: str
    role: str
    name: Optional[str] = None
    courseType: Optional[str] = None
    googleCalendarConnected: bool = False


class LoginResponse(BaseModel):
    success: bool = True
    token: str
    user: UserOut
