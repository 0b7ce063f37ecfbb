"""FastAPI application bootstrap for MedShare."""
from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .domain.errors import (
    ConflictRace,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    SharingError,
    SourceUnavailable,
)
from .infra.db import init_db
from .routers import analytics, audit, grants, timeline

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    PermissionDenied: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidArgument: status.HTTP_400_BAD_REQUEST,
    ConflictRace: status.HTTP_409_CONFLICT,
    SourceUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("startup complete")
    yield


async def sharing_error_handler(request: Request, exc: SharingError) -> JSONResponse:
    code = next(
        (ERROR_STATUS[cls] for cls in type(exc).__mro__ if cls in ERROR_STATUS),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return JSONResponse(
        status_code=code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


def create_app() -> FastAPI:
    app = FastAPI(title="MedShare API", version="0.1.0", lifespan=lifespan)

    app.add_exception_handler(SharingError, sharing_error_handler)

    app.include_router(grants.router, prefix="/grants", tags=["grants"])
    app.include_router(timeline.router, prefix="/timeline", tags=["timeline"])
    app.include_router(audit.router, prefix="/audit", tags=["audit"])
    app.include_router(analytics.router, prefix="/analytics", tags=["analytics"])

    return app


app = create_app()
