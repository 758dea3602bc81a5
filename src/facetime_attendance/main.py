"""
Main application module for the FaceTime Attendance API.

This module sets up the FastAPI application with lifespan management,
database connections, routing, error handlers and request logging.
"""

import asyncio
from contextlib import asynccontextmanager
import time

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
import uvicorn

from facetime_attendance.config import settings
from facetime_attendance.database import db_manager
from facetime_attendance.managers.logging_manager import get_logger
from facetime_attendance.managers.redis_manager import redis_manager
from facetime_attendance.routes import auth_router, main_router, users_router
from facetime_attendance.routes.auth.dependencies import get_challenge_cache, get_credential_store, reset_dependencies
from facetime_attendance.routes.auth.periodics.cleanup import periodic_challenge_cleanup
from facetime_attendance.utils.error_handling import register_exception_handlers
from facetime_attendance.utils.logging_utils import (
    RequestLoggingMiddleware,
    log_application_lifecycle,
    log_error_with_context,
)

logger = get_logger()

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Connects MongoDB and ensures indexes, checks Redis when it backs the
    challenge cache, and runs the challenge cleanup task until shutdown.
    """
    startup_start_time = time.time()
    log_application_lifecycle(
        "startup_initiated",
        {
            "app_name": settings.APP_NAME,
            "version": APP_VERSION,
            "environment": "production" if settings.is_production else "development",
            "challenge_backend": settings.CHALLENGE_BACKEND,
            "rp_id": settings.WEBAUTHN_RP_ID,
        },
    )

    try:
        db_connect_start = time.time()
        await db_manager.connect()
        log_application_lifecycle(
            "database_connected",
            {
                "connection_duration": f"{time.time() - db_connect_start:.3f}s",
                "database_name": settings.MONGODB_DATABASE,
            },
        )

        await get_credential_store().ensure_indexes()
        log_application_lifecycle("database_indexes_ready", {"collection": settings.USERS_COLLECTION})

        if settings.CHALLENGE_BACKEND == "redis":
            await redis_manager.get_redis()
            log_application_lifecycle("redis_connected", {"redis_url": settings.REDIS_URL.split("@")[-1]})
    except Exception as e:
        log_application_lifecycle(
            "startup_failed",
            {
                "error": str(e),
                "error_type": type(e).__name__,
                "startup_duration": f"{time.time() - startup_start_time:.3f}s",
            },
        )
        log_error_with_context(e, {"operation": "application_startup"})
        raise

    background_tasks = {
        "challenge_cleanup": asyncio.create_task(periodic_challenge_cleanup(get_challenge_cache())),
    }
    log_application_lifecycle("background_tasks_started", {"tasks": list(background_tasks.keys())})

    total_startup_duration = time.time() - startup_start_time
    log_application_lifecycle("startup_completed", {"total_startup_duration": f"{total_startup_duration:.3f}s"})
    logger.info("FastAPI application startup completed in %.3fs", total_startup_duration)

    yield

    shutdown_start_time = time.time()
    log_application_lifecycle("shutdown_initiated", {"active_background_tasks": len(background_tasks)})

    for task in background_tasks.values():
        task.cancel()
    for task_name, task in background_tasks.items():
        try:
            await asyncio.wait_for(task, timeout=5.0)
        except asyncio.CancelledError:
            logger.info("Background task %s cancelled successfully", task_name)
        except asyncio.TimeoutError:
            logger.warning("Background task %s cancellation timed out", task_name)

    try:
        await redis_manager.close()
        await db_manager.disconnect()
    except Exception as e:
        log_error_with_context(e, {"operation": "connection_shutdown"})
    reset_dependencies()

    log_application_lifecycle(
        "shutdown_completed", {"total_shutdown_duration": f"{time.time() - shutdown_start_time:.3f}s"}
    )


app = FastAPI(
    title="FaceTime Attendance API",
    description="""
    ## FaceTime Attendance API

    Server side of the face-recognition attendance app: user enrolment with face
    descriptors and fingerprint (WebAuthn) registration and login used as a
    second factor.
    """,
    version=APP_VERSION,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "WebAuthn", "description": "Fingerprint registration and login ceremonies"},
        {"name": "Users", "description": "User enrolment and management"},
        {"name": "System", "description": "System health and monitoring endpoints"},
    ],
)

app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)

routers_config = [
    ("main", main_router, "Root and health check"),
    ("auth", auth_router, "WebAuthn ceremony endpoints"),
    ("users", users_router, "User management endpoints"),
]
for router_name, router, description in routers_config:
    app.include_router(router)
    logger.info("Included %s router: %s", router_name, description)

log_application_lifecycle(
    "routers_configured", {"routers": [router_name for router_name, _, _ in routers_config]}
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=False,
).instrument(app).expose(app, include_in_schema=False, endpoint="/metrics")


if __name__ == "__main__":
    uvicorn.run(
        "facetime_attendance.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG, log_level="info"
    )
