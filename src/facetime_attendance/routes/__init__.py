"""Routes package initialization."""

from facetime_attendance.routes.auth import router as auth_router
from facetime_attendance.routes.main import router as main_router
from facetime_attendance.routes.users import router as users_router
