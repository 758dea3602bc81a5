"""Relying party parameters shared by both WebAuthn ceremonies."""

from dataclasses import dataclass

from facetime_attendance.config import Settings


@dataclass(frozen=True)
class RelyingPartyConfig:
    id: str
    name: str
    origin: str
    require_user_verification: bool = True
    reject_counter_regression: bool = True
    timeout_ms: int = 60000

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelyingPartyConfig":
        return cls(
            id=settings.WEBAUTHN_RP_ID,
            name=settings.WEBAUTHN_RP_NAME,
            origin=settings.webauthn_expected_origin,
            require_user_verification=settings.WEBAUTHN_REQUIRE_USER_VERIFICATION,
            reject_counter_regression=settings.WEBAUTHN_REJECT_COUNTER_REGRESSION,
            timeout_ms=settings.WEBAUTHN_TIMEOUT_MS,
        )
