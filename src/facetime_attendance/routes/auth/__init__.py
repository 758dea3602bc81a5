"""WebAuthn package initialization."""

from facetime_attendance.routes.auth.routes import router
