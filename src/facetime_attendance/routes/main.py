"""Main routes module: service root and health check."""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from facetime_attendance.config import settings
from facetime_attendance.database import db_manager
from facetime_attendance.managers.logging_manager import get_logger

logger = get_logger(prefix="[Health]")

router = APIRouter(tags=["System"])


@router.get("/", summary="API root")
async def root():
    return {"name": settings.APP_NAME, "env": settings.ENV, "status": "running"}


@router.get(
    "/health",
    summary="Health check",
    description="""
    Reports MongoDB connectivity.

    **Response Codes:**
    - 200: database reachable
    - 503: database unreachable
    """,
    responses={
        200: {"content": {"application/json": {"example": {"status": "healthy", "database": "connected"}}}},
        503: {"content": {"application/json": {"example": {"status": "unhealthy", "database": "disconnected"}}}},
    },
)
async def health_check() -> JSONResponse:
    if await db_manager.health_check():
        return JSONResponse({"status": "healthy", "database": "connected"})
    logger.warning("Health check failed: database unreachable")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "unhealthy", "database": "disconnected"},
    )
