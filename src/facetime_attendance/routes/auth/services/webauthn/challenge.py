"""
WebAuthn challenge generation and storage service.

Each username has at most one outstanding challenge. Issuing a new one
overwrites the previous challenge, whichever ceremony it belonged to, so a
browser that starts registration and then login in parallel for the same
user will fail the first ceremony with "challenge not found". Challenges are
single-use: ``consume`` removes the value atomically before returning it.

Two storage backends exist: an in-process dict (default, single worker) and
Redis (``SET ... EX`` plus ``GETDEL``) for multi-worker deployments.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
import json
import secrets
from typing import Callable, Dict, Optional, Protocol

from facetime_attendance.managers.logging_manager import get_logger
from facetime_attendance.managers.redis_manager import RedisManager
from facetime_attendance.models.user_models import utc_now
from facetime_attendance.utils.error_handling import ChallengeNotFoundError, InputError
from facetime_attendance.utils.logging_utils import log_security_event

logger = get_logger(prefix="[WebAuthn Challenge]")

CHALLENGE_LENGTH_BYTES = 32  # 256 bits of entropy
DEFAULT_CHALLENGE_TTL_SECONDS = 300
REDIS_CHALLENGE_PREFIX = "webauthn_challenge:"


def generate_secure_challenge() -> str:
    """
    Generate a cryptographically secure challenge for WebAuthn operations.

    Returns:
        str: A secure random challenge (base64url encoded, 43 characters)
    """
    return secrets.token_urlsafe(CHALLENGE_LENGTH_BYTES)


@dataclass(frozen=True)
class StoredChallenge:
    username: str
    value: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_json(self) -> str:
        return json.dumps(
            {
                "username": self.username,
                "value": self.value,
                "issued_at": self.issued_at.isoformat(),
                "expires_at": self.expires_at.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "StoredChallenge":
        data = json.loads(raw)
        return cls(
            username=data["username"],
            value=data["value"],
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


class ChallengeBackend(Protocol):
    async def put(self, challenge: StoredChallenge, ttl_seconds: int) -> None: ...

    async def pop(self, username: str) -> Optional[StoredChallenge]: ...

    async def purge_expired(self, now: datetime) -> int: ...


class MemoryChallengeBackend:
    """Challenges held in this process only."""

    def __init__(self):
        self._entries: Dict[str, StoredChallenge] = {}
        self._lock = asyncio.Lock()

    async def put(self, challenge: StoredChallenge, ttl_seconds: int) -> None:
        async with self._lock:
            self._entries[challenge.username] = challenge

    async def pop(self, username: str) -> Optional[StoredChallenge]:
        async with self._lock:
            return self._entries.pop(username, None)

    async def purge_expired(self, now: datetime) -> int:
        async with self._lock:
            expired = [username for username, entry in self._entries.items() if entry.is_expired(now)]
            for username in expired:
                del self._entries[username]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class RedisChallengeBackend:
    """Challenges shared by all workers through Redis; expiry is the key TTL."""

    def __init__(self, redis_manager: RedisManager, key_prefix: str = REDIS_CHALLENGE_PREFIX):
        self._redis_manager = redis_manager
        self._key_prefix = key_prefix

    def _key(self, username: str) -> str:
        return f"{self._key_prefix}{username}"

    async def put(self, challenge: StoredChallenge, ttl_seconds: int) -> None:
        redis_conn = await self._redis_manager.get_redis()
        await redis_conn.set(self._key(challenge.username), challenge.to_json(), ex=ttl_seconds)

    async def pop(self, username: str) -> Optional[StoredChallenge]:
        redis_conn = await self._redis_manager.get_redis()
        raw = await redis_conn.getdel(self._key(username))
        if raw is None:
            return None
        return StoredChallenge.from_json(raw)

    async def purge_expired(self, now: datetime) -> int:
        return 0


class ChallengeCache:
    """Per-username, single-use, time-bounded WebAuthn challenges."""

    def __init__(
        self,
        backend: ChallengeBackend,
        ttl_seconds: int = DEFAULT_CHALLENGE_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._backend = backend
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    async def issue(self, username: str) -> str:
        """Create a fresh challenge for ``username``, replacing any previous one."""
        if not username:
            raise InputError("Username is required")

        now = self._clock()
        challenge = StoredChallenge(
            username=username,
            value=generate_secure_challenge(),
            issued_at=now,
            expires_at=now + timedelta(seconds=self._ttl_seconds),
        )
        await self._backend.put(challenge, self._ttl_seconds)

        log_security_event(
            event_type="webauthn_challenge_issued",
            user_id=username,
            details={"expires_at": challenge.expires_at.isoformat(), "challenge_prefix": challenge.value[:8] + "..."},
        )
        return challenge.value

    async def consume(self, username: str) -> Optional[str]:
        """Remove and return the outstanding challenge; None when absent or expired."""
        if not username:
            return None

        challenge = await self._backend.pop(username)
        if challenge is None:
            logger.info("No outstanding challenge for user '%s'", username)
            return None
        if challenge.is_expired(self._clock()):
            logger.info("Challenge for user '%s' expired at %s", username, challenge.expires_at.isoformat())
            return None
        return challenge.value

    async def require(self, username: str) -> str:
        value = await self.consume(username)
        if value is None:
            log_security_event(event_type="webauthn_challenge_missing", user_id=username, success=False)
            raise ChallengeNotFoundError()
        return value

    async def purge_expired(self) -> int:
        """Drop expired challenges; returns the number removed."""
        return await self._backend.purge_expired(self._clock())
