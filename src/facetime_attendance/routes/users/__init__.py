"""User management package initialization."""

from facetime_attendance.routes.users.routes import router
