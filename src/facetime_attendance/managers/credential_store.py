"""
Durable storage of registered users and their authenticators.

One MongoDB document per user, keyed by ``name``. Every mutation is a single
atomic document update; writers for the same name are additionally
serialized in-process by a per-name ``asyncio.Lock``.
"""

import asyncio
from typing import Dict, List, Optional
import weakref

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import DuplicateKeyError

from facetime_attendance.config import settings
from facetime_attendance.managers.logging_manager import get_logger
from facetime_attendance.models.user_models import Authenticator, UserAccount, utc_now
from facetime_attendance.utils.error_handling import AttendanceError, ConflictError, InputError, NotFoundError
from facetime_attendance.utils.logging_utils import log_database_operation, log_performance

logger = get_logger(prefix="[Credential Store]")

COLLECTION = settings.USERS_COLLECTION
NAME_INDEX = "name_unique"
CREDENTIAL_INDEX = "authenticators_credential_id_unique"

# Outcomes reported to the client (404, 409, ...) rather than database failures.
EXPECTED_ERRORS = (AttendanceError,)


def _is_name_collision(exc: DuplicateKeyError) -> bool:
    """True when ``exc`` was raised by the unique index on ``name``."""
    key_pattern = (exc.details or {}).get("keyPattern") or {}
    if key_pattern:
        return "name" in key_pattern
    return NAME_INDEX in str(exc)


class CredentialStore:
    """Users collection access with per-name write serialization."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self._collection = collection
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        return lock

    async def ensure_indexes(self) -> None:
        """Create the unique indexes on user name and credential ID."""
        await self._collection.create_index("name", unique=True, name=NAME_INDEX)
        # Users without authenticators must not collide on a missing credential ID.
        await self._collection.create_index(
            "authenticators.credential_id",
            unique=True,
            name=CREDENTIAL_INDEX,
            partialFilterExpression={"authenticators.credential_id": {"$exists": True}},
        )
        logger.info("Indexes ensured on '%s'", self._collection.name)

    @log_database_operation(COLLECTION, "find_one")
    async def get_by_name(self, name: str) -> Optional[UserAccount]:
        document = await self._collection.find_one({"name": name})
        if document is None:
            return None
        return UserAccount.from_document(document)

    @log_database_operation(COLLECTION, "find")
    async def list_accounts(self) -> List[UserAccount]:
        documents = await self._collection.find({}).to_list(length=None)
        return [UserAccount.from_document(document) for document in documents]

    @log_database_operation(COLLECTION, "upsert", expected_errors=EXPECTED_ERRORS)
    async def upsert(self, account: UserAccount) -> None:
        """
        Create or update a user, writing only the fields that were supplied.

        Fields the caller did not set on ``account`` (typically
        ``authenticators`` when saving a face descriptor) are left untouched on
        an existing record. New records start with no authenticators.
        """
        supplied = account.model_fields_set - {"name", "created_at", "updated_at"}
        now = utc_now()
        update: Dict[str, Dict] = {
            "$set": {**account.model_dump(include=supplied), "updated_at": now},
            "$setOnInsert": {"created_at": now},
        }
        if "authenticators" not in supplied:
            update["$setOnInsert"]["authenticators"] = []

        async with self._lock_for(account.name):
            try:
                await self._collection.update_one({"name": account.name}, update, upsert=True)
            except DuplicateKeyError as exc:
                if not _is_name_collision(exc):
                    raise ConflictError("A credential in this record is already registered") from exc
                # Another worker inserted the same name first; the retry updates its document.
                logger.info("Concurrent insert of user '%s'; retrying as an update", account.name)
                try:
                    await self._collection.update_one({"name": account.name}, update, upsert=True)
                except DuplicateKeyError as retry_exc:
                    if _is_name_collision(retry_exc):
                        raise ConflictError(f"User '{account.name}' already exists") from retry_exc
                    raise ConflictError("A credential in this record is already registered") from retry_exc
        logger.info("Upserted user '%s' (fields: %s)", account.name, sorted(supplied) or "none")

    @log_performance("append_authenticator")
    async def append_authenticator(self, name: str, authenticator: Authenticator) -> None:
        """Attach a new authenticator to ``name``, creating the user if needed."""
        async with self._lock_for(name):
            owner = await self._collection.find_one(
                {"authenticators.credential_id": authenticator.credential_id}, {"name": 1}
            )
            if owner is not None:
                logger.warning(
                    "Credential %s... already registered (owner matches: %s)",
                    authenticator.credential_id[:12],
                    owner.get("name") == name,
                )
                raise ConflictError("Authenticator is already registered")

            now = utc_now()
            try:
                await self._collection.update_one(
                    {"name": name},
                    {
                        "$push": {"authenticators": authenticator.to_document()},
                        "$set": {"updated_at": now},
                        "$setOnInsert": {"created_at": now},
                    },
                    upsert=True,
                )
            except DuplicateKeyError as exc:
                raise ConflictError("Authenticator is already registered") from exc
        logger.info("Authenticator %s... appended to user '%s'", authenticator.credential_id[:12], name)

    @log_database_operation(COLLECTION, "update_counter")
    async def update_counter(
        self, name: str, credential_id: str, new_counter: int, require_increase: bool = True
    ) -> bool:
        """
        Store the latest signature counter for one authenticator.

        With ``require_increase`` the write only happens while the stored
        counter is below ``new_counter`` (or both are 0), checked by the
        database in the same update, so a concurrent login that already
        stored a higher value wins.

        Returns False (and changes nothing) when the user or credential is
        gone, or when the stored counter no longer allows ``new_counter``.
        """
        match: Dict[str, object] = {"credential_id": credential_id}
        if require_increase:
            match["counter"] = 0 if new_counter == 0 else {"$lt": new_counter}

        now = utc_now()
        async with self._lock_for(name):
            result = await self._collection.update_one(
                {"name": name, "authenticators": {"$elemMatch": match}},
                {
                    "$set": {
                        "authenticators.$.counter": new_counter,
                        "authenticators.$.last_used_at": now,
                        "updated_at": now,
                    }
                },
            )
        if result.matched_count == 0:
            logger.warning(
                "Counter update to %d skipped for %s... of '%s': credential gone or counter already advanced",
                new_counter,
                credential_id[:12],
                name,
            )
            return False
        return True

    @log_database_operation(COLLECTION, "rename", expected_errors=EXPECTED_ERRORS)
    async def rename(self, old_name: str, new_name: str) -> None:
        if not new_name or not new_name.strip():
            raise InputError("New name must not be empty")
        if old_name == new_name:
            return

        first, second = sorted((old_name, new_name))
        async with self._lock_for(first), self._lock_for(second):
            if await self._collection.find_one({"name": old_name}, {"_id": 1}) is None:
                raise NotFoundError(f"User '{old_name}' not found")
            if await self._collection.find_one({"name": new_name}, {"_id": 1}) is not None:
                raise ConflictError(f"User '{new_name}' already exists")
            try:
                result = await self._collection.update_one(
                    {"name": old_name}, {"$set": {"name": new_name, "updated_at": utc_now()}}
                )
            except DuplicateKeyError as exc:
                raise ConflictError(f"User '{new_name}' already exists") from exc
        if result.matched_count == 0:
            raise NotFoundError(f"User '{old_name}' not found")
        logger.info("Renamed user '%s' to '%s'", old_name, new_name)

    @log_database_operation(COLLECTION, "delete_one", expected_errors=EXPECTED_ERRORS)
    async def delete(self, name: str) -> None:
        async with self._lock_for(name):
            result = await self._collection.delete_one({"name": name})
        if result.deleted_count == 0:
            raise NotFoundError(f"User '{name}' not found")
        logger.info("Deleted user '%s'", name)
