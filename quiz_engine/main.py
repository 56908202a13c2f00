"""FastAPI entrypoint for the Proctored Quiz Session Engine."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from quiz_engine.config import settings
from quiz_engine.database import create_db_and_tables
from quiz_engine.deps import close_quiz_client, close_registry
from quiz_engine.exceptions import (
    ServiceError,
    ServiceNotImplemented,
    ServiceTimeout,
    SessionMisuseError,
    UnknownQuestionError,
    UnknownSessionError,
)
from quiz_engine.routers import sessions as sessions_router_module

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)


@app.exception_handler(SessionMisuseError)
async def misuse_exception_handler(request: Request, exc: SessionMisuseError):
    """Contract violations by the client: unknown question -> 404, otherwise 409."""
    code = status.HTTP_404_NOT_FOUND if isinstance(exc, UnknownQuestionError) else status.HTTP_409_CONFLICT
    return JSONResponse(status_code=code, content={"detail": str(exc)})


@app.exception_handler(UnknownSessionError)
async def unknown_session_handler(request: Request, exc: UnknownSessionError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Initiation service failures surface to the caller as gateway errors."""
    if isinstance(exc, ServiceNotImplemented):
        code = status.HTTP_501_NOT_IMPLEMENTED
    elif isinstance(exc, ServiceTimeout):
        code = status.HTTP_504_GATEWAY_TIMEOUT
    else:
        code = status.HTTP_502_BAD_GATEWAY
    logger.warning("Quiz service error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


# Routers
app.include_router(sessions_router_module.router, tags=["sessions"])


@app.get("/")
async def home():
    return {"app": settings.APP_NAME, "status": "ok"}


@app.on_event("startup")
def on_startup():
    """Initialize database schema for drafts and attempt records."""
    create_db_and_tables()


@app.on_event("shutdown")
async def on_shutdown():
    await close_quiz_client()
    close_registry()
