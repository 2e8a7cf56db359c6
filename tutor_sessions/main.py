# tutor_sessions/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text

from tutor_sessions.config import get_settings
from tutor_sessions.db.session import engine
from tutor_sessions.models import Base
from tutor_sessions.routers import auth as auth_router
from tutor_sessions.routers import google_oauth as google_oauth_router
from tutor_sessions.routers import session_requests as sr_router
from tutor_sessions.routers import tutor as tutor_router

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("%s started (env=%s)", settings.APP_NAME, settings.ENV)
    yield


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# Routers
app.include_router(auth_router.router)
app.include_router(google_oauth_router.router)
app.include_router(sr_router.router, prefix="/session-requests", tags=["session-requests"])
app.include_router(tutor_router.router)


# Body / query validation failures are plain 400s, same as ValidationFailed
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


@app.get("/health")
def health_check():
    db_status = "ok"
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database health check failed")
        db_status = "error"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "app": settings.APP_NAME,
        "env": settings.ENV,
        "database": db_status,
    }
