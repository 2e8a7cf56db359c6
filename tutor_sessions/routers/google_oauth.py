# tutor_sessions/routers/google_oauth.py
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from tutor_sessions.config import get_settings
from tutor_sessions.core.exceptions import CalendarError
from tutor_sessions.core.security import create_access_token, verify_access_token
from tutor_sessions.db.session import get_db
from tutor_sessions.dependencies.auth import require_roles
from tutor_sessions.models.user import User, UserRole
from tutor_sessions.services.google_calendar_client import (
    GoogleCalendarClient,
    get_google_calendar_client,
)
from tutor_sessions.services.token_store import CalendarTokenStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/google", tags=["google-calendar"])

calendar_users = require_roles(UserRole.TUTOR, UserRole.STUDENT)

OAUTH_STATE_PURPOSE = "google_oauth"
OAUTH_STATE_TTL = timedelta(minutes=10)


def make_oauth_state(user_id: str) -> str:
    return create_access_token({"sub": user_id, "purpose": OAUTH_STATE_PURPOSE}, OAUTH_STATE_TTL)


def read_oauth_state(state: Optional[str]) -> Optional[str]:
    """User id carried by a state we issued, or None if it is forged or expired."""
    payload = verify_access_token(state) if state else None
    if not payload or payload.get("purpose") != OAUTH_STATE_PURPOSE:
        return None
    return payload.get("sub")


def _redirect_path(user: Optional[User]) -> str:
    if user is not None and user.role == UserRole.TUTOR.value:
        return "/tutor/calendar-connected"
    return "/student"


@router.get("/connect")
def connect_calendar(
    user: User = Depends(calendar_users),
    client: GoogleCalendarClient = Depends(get_google_calendar_client),
) -> Dict[str, Any]:
    """
    Start the Google OAuth consent flow. A short-lived signed token carrying
    the user id travels in `state` so the callback knows whose tokens it
    received and cannot be pointed at another account.
    """
    return {
        "success": True,
        "authUrl": client.get_authorization_url(state=make_oauth_state(user.id)),
        "message": "Visit this URL to authorize Google Calendar access",
    }


@router.get("/callback")
def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    db: Session = Depends(get_db),
    client: GoogleCalendarClient = Depends(get_google_calendar_client),
):
    """
    Google redirects here after consent; no bearer token is available.
    """
    if not code:
        raise HTTPException(status_code=400, detail="Authorization code is required")

    frontend = get_settings().FRONTEND_URL
    user_id = read_oauth_state(state)
    if user_id is None:
        logger.warning("Rejected Google OAuth callback with invalid state")
        raise HTTPException(status_code=400, detail="Invalid or expired OAuth state")

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    try:
        tokens = client.exchange_code(code)
        email = client.get_account_email(tokens)
    except CalendarError as e:
        logger.error("Google OAuth callback failed for user %s: %s", user.id, e)
        return RedirectResponse(f"{frontend}{_redirect_path(user)}?calendarError=true")

    CalendarTokenStore(db, client).save_tokens(user, tokens, email)
    logger.info("User %s connected Google Calendar (%s)", user.id, email)
    return RedirectResponse(f"{frontend}{_redirect_path(user)}?calendarConnected=true")


@router.get("/status")
def connection_status(user: User = Depends(calendar_users)) -> Dict[str, Any]:
    return {
        "success": True,
        "connected": user.google_calendar_connected,
        "email": user.google_email,
    }


@router.post("/disconnect")
def disconnect_calendar(
    db: Session = Depends(get_db),
    user: User = Depends(calendar_users),
) -> Dict[str, Any]:
    CalendarTokenStore(db).clear_tokens(user)
    logger.info("User %s disconnected Google Calendar", user.id)
    return {"success": True, "message": "Google Calendar disconnected successfully"}
