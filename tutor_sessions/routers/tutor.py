# tutor_sessions/routers/tutor.py
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tutor_sessions.db.session import get_db
from tutor_sessions.dependencies.auth import require_roles
from tutor_sessions.models.user import User, UserRole
from tutor_sessions.schemas.session_request import serialize_session_request
from tutor_sessions.services.session_request_service import list_for_tutor

router = APIRouter(prefix="/tutor", tags=["tutor"])


@router.get("/session-requests")
def my_assigned_session_requests(
    db: Session = Depends(get_db),
    user: User = Depends(require_roles(UserRole.TUTOR)),
) -> Dict[str, Any]:
    """
    Session requests assigned to the current tutor, newest first.
    """
    requests = list_for_tutor(db, user.id)
    return {
        "success": True,
        "requests": [serialize_session_request(r, user.role) for r in requests],
    }
