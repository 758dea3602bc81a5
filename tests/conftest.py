"""
Pytest configuration for FaceTime Attendance tests.

Provides an in-memory stand-in for the motor users collection, a software
WebAuthn authenticator producing real attestation and assertion payloads,
and fixtures wiring the credential store, challenge cache and ceremonies
together without MongoDB or Redis.
"""

import copy
from datetime import datetime, timedelta, timezone
import json
import os
import struct
import sys
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

from bson import ObjectId
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from fido2 import cbor
from fido2.cose import ES256
from fido2.utils import sha256, websafe_encode
from pymongo.errors import DuplicateKeyError
import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from facetime_attendance.managers.credential_store import CredentialStore
from facetime_attendance.routes.auth.services.webauthn.authentication import AuthenticationCeremony
from facetime_attendance.routes.auth.services.webauthn.challenge import ChallengeCache, MemoryChallengeBackend
from facetime_attendance.routes.auth.services.webauthn.registration import RegistrationCeremony
from facetime_attendance.routes.auth.services.webauthn.relying_party import RelyingPartyConfig

TEST_RP_ID = "localhost"
TEST_ORIGIN = "http://localhost:9002"

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40


# --- In-memory users collection ---


def name_collision() -> DuplicateKeyError:
    """The error MongoDB raises when the unique name index rejects a write."""
    return DuplicateKeyError("E11000 duplicate key error index: name_unique", 11000, {"keyPattern": {"name": 1}})


class FakeUpdateResult:
    def __init__(self, matched_count: int, modified_count: int, upserted_id=None):
        self.matched_count = matched_count
        self.modified_count = modified_count
        self.upserted_id = upserted_id


class FakeDeleteResult:
    def __init__(self, deleted_count: int):
        self.deleted_count = deleted_count


class FakeCursor:
    def __init__(self, documents: List[Dict[str, Any]]):
        self._documents = documents

    async def to_list(self, length=None):
        return self._documents if length is None else self._documents[:length]


class FakeUsersCollection:
    """
    The subset of ``AsyncIOMotorCollection`` the credential store uses.

    Understands equality filters on top-level fields, on
    ``authenticators.credential_id`` and ``$elemMatch`` with ``$lt`` / ``$lte``
    on ``authenticators``, the ``$set`` / ``$setOnInsert`` /
    ``$push`` operators (including the positional ``authenticators.$.field``
    form) and enforces the unique name and credential ID indexes.
    """

    name = "registered_users"

    def __init__(self):
        self.documents: List[Dict[str, Any]] = []
        self.indexes: Dict[str, Dict[str, Any]] = {}

    @staticmethod
    def _value_matches(value: Any, condition: Any) -> bool:
        if isinstance(condition, dict):
            if "$lt" in condition and not (value is not None and value < condition["$lt"]):
                return False
            if "$lte" in condition and not (value is not None and value <= condition["$lte"]):
                return False
            return True
        return value == condition

    @classmethod
    def _element_index(cls, document: Dict[str, Any], query: Dict[str, Any]) -> Optional[int]:
        """Index of the first authenticator the query's array condition selects."""
        if "authenticators" in query:
            conditions = query["authenticators"]["$elemMatch"]
        elif "authenticators.credential_id" in query:
            conditions = {"credential_id": query["authenticators.credential_id"]}
        else:
            return None
        for index, authenticator in enumerate(document.get("authenticators", [])):
            if all(cls._value_matches(authenticator.get(field), cond) for field, cond in conditions.items()):
                return index
        return None

    @classmethod
    def _matches(cls, document: Dict[str, Any], query: Dict[str, Any]) -> bool:
        for key, expected in query.items():
            if key.startswith("authenticators"):
                continue
            if document.get(key) != expected:
                return False
        if "authenticators" in query or "authenticators.credential_id" in query:
            return cls._element_index(document, query) is not None
        return True

    def _find(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for document in self.documents:
            if self._matches(document, query):
                return document
        return None

    def _check_unique(self, candidate: Dict[str, Any], replacing: Optional[Dict[str, Any]]) -> None:
        others = [document for document in self.documents if document is not replacing]
        if any(document.get("name") == candidate.get("name") for document in others):
            raise name_collision()
        taken = {a["credential_id"] for document in others for a in document.get("authenticators", [])}
        if any(a["credential_id"] in taken for a in candidate.get("authenticators", [])):
            raise DuplicateKeyError(
                "E11000 duplicate key error index: authenticators_credential_id_unique",
                11000,
                {"keyPattern": {"authenticators.credential_id": 1}},
            )

    @classmethod
    def _apply(cls, document: Dict[str, Any], update: Dict[str, Any], query: Dict[str, Any], inserting: bool) -> None:
        if inserting:
            for key, value in update.get("$setOnInsert", {}).items():
                document[key] = copy.deepcopy(value)
        # The positional operator targets the element selected by the filter, before this update.
        position = cls._element_index(document, query)
        for key, value in update.get("$set", {}).items():
            if key.startswith("authenticators.$."):
                field = key.split(".", 2)[2]
                document["authenticators"][position][field] = copy.deepcopy(value)
            else:
                document[key] = copy.deepcopy(value)
        for key, value in update.get("$push", {}).items():
            document.setdefault(key, []).append(copy.deepcopy(value))

    async def create_index(self, keys, **kwargs):
        name = kwargs.get("name") or str(keys)
        self.indexes[name] = {"keys": keys, **kwargs}
        return name

    async def find_one(self, query: Dict[str, Any], projection=None):
        document = self._find(query)
        return copy.deepcopy(document) if document is not None else None

    def find(self, query: Optional[Dict[str, Any]] = None):
        query = query or {}
        return FakeCursor([copy.deepcopy(d) for d in self.documents if self._matches(d, query)])

    async def insert_one(self, document: Dict[str, Any]):
        candidate = copy.deepcopy(document)
        candidate.setdefault("_id", ObjectId())
        self._check_unique(candidate, None)
        self.documents.append(candidate)
        return candidate["_id"]

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False):
        existing = self._find(query)
        if existing is None:
            if not upsert:
                return FakeUpdateResult(0, 0)
            candidate = {
                key: copy.deepcopy(value) for key, value in query.items() if not key.startswith("authenticators")
            }
            candidate["_id"] = ObjectId()
            self._apply(candidate, update, query, inserting=True)
            self._check_unique(candidate, None)
            self.documents.append(candidate)
            return FakeUpdateResult(0, 0, upserted_id=candidate["_id"])

        candidate = copy.deepcopy(existing)
        self._apply(candidate, update, query, inserting=False)
        self._check_unique(candidate, existing)
        existing.clear()
        existing.update(candidate)
        return FakeUpdateResult(1, 1)

    async def delete_one(self, query: Dict[str, Any]):
        existing = self._find(query)
        if existing is None:
            return FakeDeleteResult(0)
        self.documents.remove(existing)
        return FakeDeleteResult(1)


# --- Software authenticator ---


class SoftAuthenticator:
    """A P-256 platform authenticator producing ``none``-format attestations."""

    def __init__(self, rp_id: str = TEST_RP_ID, origin: str = TEST_ORIGIN, credential_id: Optional[bytes] = None):
        self.rp_id = rp_id
        self.origin = origin
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.cose_key = ES256.from_cryptography_key(self.private_key.public_key())
        self.credential_id = credential_id or os.urandom(32)
        self.sign_count = 0

    @property
    def credential_id_b64(self) -> str:
        return websafe_encode(self.credential_id)

    def client_data(self, ceremony_type: str, challenge: str, origin: Optional[str] = None) -> bytes:
        return json.dumps(
            {
                "type": ceremony_type,
                "challenge": challenge,
                "origin": origin or self.origin,
                "crossOrigin": False,
            }
        ).encode()

    def authenticator_data(
        self, flags: int, counter: int, attested: bool = False, rp_id: Optional[str] = None
    ) -> bytes:
        data = sha256((rp_id or self.rp_id).encode()) + struct.pack(">BI", flags, counter)
        if attested:
            data += (
                b"\x00" * 16
                + struct.pack(">H", len(self.credential_id))
                + self.credential_id
                + cbor.encode(dict(self.cose_key))
            )
        return data

    def create(
        self,
        options: Dict[str, Any],
        *,
        fmt: str = "none",
        att_stmt: Optional[Dict[str, Any]] = None,
        flags: int = FLAG_UP | FLAG_UV | FLAG_AT,
        origin: Optional[str] = None,
        rp_id: Optional[str] = None,
        ceremony_type: str = "webauthn.create",
        challenge: Optional[str] = None,
        response_id: Optional[str] = None,
        transports: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Build the JSON a browser posts after ``navigator.credentials.create()``."""
        client_data = self.client_data(ceremony_type, challenge or options["challenge"], origin)
        auth_data = self.authenticator_data(flags, self.sign_count, attested=bool(flags & FLAG_AT), rp_id=rp_id)
        attestation_object = cbor.encode({"fmt": fmt, "attStmt": att_stmt or {}, "authData": auth_data})
        credential_id = response_id or self.credential_id_b64
        return {
            "id": credential_id,
            "rawId": credential_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(client_data),
                "attestationObject": websafe_encode(attestation_object),
                "transports": transports if transports is not None else ["internal", "hybrid"],
            },
            "clientExtensionResults": {},
            "authenticatorAttachment": "platform",
        }

    def get(
        self,
        options: Dict[str, Any],
        *,
        counter: Optional[int] = None,
        flags: int = FLAG_UP | FLAG_UV,
        origin: Optional[str] = None,
        rp_id: Optional[str] = None,
        ceremony_type: str = "webauthn.get",
        challenge: Optional[str] = None,
        tamper_signature: bool = False,
    ) -> Dict[str, Any]:
        """Build the JSON a browser posts after ``navigator.credentials.get()``."""
        if counter is None:
            self.sign_count += 1
            counter = self.sign_count
        client_data = self.client_data(ceremony_type, challenge or options["challenge"], origin)
        auth_data = self.authenticator_data(flags, counter, rp_id=rp_id)
        signature = self.private_key.sign(auth_data + sha256(client_data), ec.ECDSA(hashes.SHA256()))
        if tamper_signature:
            signature = signature[:-1] + bytes([signature[-1] ^ 0x01])
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "type": "public-key",
            "response": {
                "clientDataJSON": websafe_encode(client_data),
                "authenticatorData": websafe_encode(auth_data),
                "signature": websafe_encode(signature),
                "userHandle": None,
            },
            "clientExtensionResults": {},
        }


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# --- Fixtures ---


@pytest.fixture
def users_collection():
    return FakeUsersCollection()


@pytest.fixture
def credential_store(users_collection):
    return CredentialStore(users_collection)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def challenge_backend():
    return MemoryChallengeBackend()


@pytest.fixture
def challenge_cache(challenge_backend, clock):
    return ChallengeCache(challenge_backend, ttl_seconds=300, clock=clock)


@pytest.fixture
def relying_party():
    return RelyingPartyConfig(id=TEST_RP_ID, name="FaceTime Attendance", origin=TEST_ORIGIN)


@pytest.fixture
def registration_ceremony(credential_store, challenge_cache, relying_party):
    return RegistrationCeremony(credential_store, challenge_cache, relying_party)


@pytest.fixture
def authentication_ceremony(credential_store, challenge_cache, relying_party):
    return AuthenticationCeremony(credential_store, challenge_cache, relying_party)


@pytest.fixture
def soft_authenticator():
    return SoftAuthenticator()


@pytest.fixture
def soft_authenticator_factory():
    return SoftAuthenticator


@pytest.fixture
def mock_redis_manager():
    """Mock Redis manager whose connection is an AsyncMock."""
    redis_manager = AsyncMock()
    redis_conn = AsyncMock()
    redis_manager.get_redis = AsyncMock(return_value=redis_conn)
    return redis_manager


@pytest.fixture
def client(credential_store, challenge_cache, relying_party):
    """TestClient with the WebAuthn singletons replaced; the lifespan is not run."""
    from fastapi.testclient import TestClient

    from facetime_attendance.main import app
    from facetime_attendance.routes.auth.dependencies import (
        get_challenge_cache,
        get_credential_store,
        get_relying_party,
    )

    app.dependency_overrides[get_credential_store] = lambda: credential_store
    app.dependency_overrides[get_challenge_cache] = lambda: challenge_cache
    app.dependency_overrides[get_relying_party] = lambda: relying_party
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
