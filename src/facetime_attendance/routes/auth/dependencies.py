"""
FastAPI dependencies wiring the WebAuthn services together.

The credential store and challenge cache are process-wide singletons built on
first use; the ceremonies are stateless and built per request from them.
Tests replace ``get_credential_store`` / ``get_challenge_cache`` through
``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends

from facetime_attendance.config import settings
from facetime_attendance.database import db_manager
from facetime_attendance.managers.credential_store import CredentialStore
from facetime_attendance.managers.logging_manager import get_logger
from facetime_attendance.managers.redis_manager import redis_manager
from facetime_attendance.routes.auth.services.webauthn.authentication import AuthenticationCeremony
from facetime_attendance.routes.auth.services.webauthn.challenge import (
    ChallengeCache,
    MemoryChallengeBackend,
    RedisChallengeBackend,
)
from facetime_attendance.routes.auth.services.webauthn.registration import RegistrationCeremony
from facetime_attendance.routes.auth.services.webauthn.relying_party import RelyingPartyConfig

logger = get_logger(prefix="[WebAuthn Dependencies]")


@lru_cache(maxsize=1)
def get_credential_store() -> CredentialStore:
    return CredentialStore(db_manager.get_collection(settings.USERS_COLLECTION))


@lru_cache(maxsize=1)
def get_challenge_cache() -> ChallengeCache:
    if settings.CHALLENGE_BACKEND == "redis":
        backend = RedisChallengeBackend(redis_manager)
    else:
        backend = MemoryChallengeBackend()
    logger.info(
        "Challenge cache using %s backend (ttl=%ds)", settings.CHALLENGE_BACKEND, settings.CHALLENGE_TTL_SECONDS
    )
    return ChallengeCache(backend, ttl_seconds=settings.CHALLENGE_TTL_SECONDS)


@lru_cache(maxsize=1)
def get_relying_party() -> RelyingPartyConfig:
    relying_party = RelyingPartyConfig.from_settings(settings)
    logger.info("Relying party id=%s origin=%s", relying_party.id, relying_party.origin)
    return relying_party


def get_registration_ceremony(
    store: CredentialStore = Depends(get_credential_store),
    challenges: ChallengeCache = Depends(get_challenge_cache),
    relying_party: RelyingPartyConfig = Depends(get_relying_party),
) -> RegistrationCeremony:
    return RegistrationCeremony(store, challenges, relying_party)


def get_authentication_ceremony(
    store: CredentialStore = Depends(get_credential_store),
    challenges: ChallengeCache = Depends(get_challenge_cache),
    relying_party: RelyingPartyConfig = Depends(get_relying_party),
) -> AuthenticationCeremony:
    return AuthenticationCeremony(store, challenges, relying_party)


def reset_dependencies() -> None:
    """Forget the cached singletons (used on shutdown so a reconnect rebinds them)."""
    get_credential_store.cache_clear()
    get_challenge_cache.cache_clear()
    get_relying_party.cache_clear()
