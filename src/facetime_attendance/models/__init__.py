"""
Data models for FaceTime Attendance.

This module contains Pydantic models for the stored user records and the
authenticators registered to them.
"""

from .user_models import KNOWN_TRANSPORTS, Authenticator, UserAccount

__all__ = [
    "KNOWN_TRANSPORTS",
    "Authenticator",
    "UserAccount",
]
