"""
Background task removing expired WebAuthn challenges.

Expired challenges are already rejected by ``ChallengeCache.consume``; this
task only keeps the in-memory backend from growing with abandoned ceremonies.
The Redis backend relies on key TTLs, so each run is a no-op there.

How to use:
- Start ``periodic_challenge_cleanup(cache)`` as an asyncio task in the
  application lifespan and cancel it on shutdown.
"""

import asyncio
from typing import Optional

from facetime_attendance.config import settings
from facetime_attendance.managers.logging_manager import get_logger
from facetime_attendance.routes.auth.services.webauthn.challenge import ChallengeCache

logger = get_logger(prefix="[Auth Periodic Cleanup]")


async def run_challenge_cleanup_once(cache: ChallengeCache) -> int:
    removed = await cache.purge_expired()
    if removed:
        logger.info("Challenge cleanup: removed %d expired challenges", removed)
    else:
        logger.debug("No expired challenges to remove this cycle.")
    return removed


async def periodic_challenge_cleanup(cache: ChallengeCache, interval: Optional[int] = None) -> None:
    """Purge expired challenges every ``interval`` seconds until cancelled."""
    interval = interval or settings.CHALLENGE_CLEANUP_INTERVAL
    logger.info("Starting periodic challenge cleanup task with interval %ds", interval)
    while True:
        try:
            await run_challenge_cleanup_once(cache)
        except Exception as exc:
            logger.error("Error in periodic_challenge_cleanup: %s", exc, exc_info=True)
        await asyncio.sleep(interval)
