"""
WebAuthn cryptographic operations for attestation and assertion checks.

Parsing of client data, authenticator data and attestation objects and all
signature work is delegated to ``fido2``; this module turns their failures
into ``VerificationFailedError`` with a short reason and logs them.
"""

import hmac
import struct
from typing import Optional

from cryptography.exceptions import InvalidSignature as CryptographyInvalidSignature
from fido2 import cbor
from fido2.attestation import Attestation, InvalidData, InvalidSignature, UnsupportedType
from fido2.cose import CoseKey
from fido2.utils import sha256, websafe_decode, websafe_encode
from fido2.webauthn import AttestationObject, AuthenticatorData, CollectedClientData

from facetime_attendance.managers.logging_manager import get_logger
from facetime_attendance.utils.error_handling import VerificationFailedError
from facetime_attendance.utils.logging_utils import log_performance, log_security_event

logger = get_logger(name="FaceTime_Attendance_WebAuthn_Crypto", prefix="[WEBAUTHN-CRYPTO]")

# COSE algorithm identifiers offered in pubKeyCredParams, in preference order
COSE_ALG_EDDSA = -8
COSE_ALG_ES256 = -7
COSE_ALG_RS256 = -257
SUPPORTED_ALGORITHMS = (COSE_ALG_EDDSA, COSE_ALG_ES256, COSE_ALG_RS256)

COSE_KEY_PARAM_ALG = 3

_PARSE_ERRORS = (ValueError, KeyError, TypeError, IndexError, struct.error)


def _fail(reason: str, **details) -> VerificationFailedError:
    log_security_event(event_type="webauthn_verification_failed", success=False, details={"reason": reason, **details})
    return VerificationFailedError(reason)


def decode_base64url(value: str, field_name: str) -> bytes:
    try:
        return websafe_decode(value)
    except _PARSE_ERRORS as e:
        raise _fail(f"{field_name} is not valid base64url") from e


def parse_client_data(client_data_json_b64: str) -> CollectedClientData:
    raw = decode_base64url(client_data_json_b64, "clientDataJSON")
    try:
        return CollectedClientData(raw)
    except _PARSE_ERRORS as e:
        raise _fail("clientDataJSON could not be parsed") from e


def parse_attestation_object(attestation_object_b64: str) -> AttestationObject:
    raw = decode_base64url(attestation_object_b64, "attestationObject")
    try:
        return AttestationObject(raw)
    except _PARSE_ERRORS as e:
        raise _fail("attestationObject could not be parsed") from e


def parse_authenticator_data(authenticator_data_b64: str) -> AuthenticatorData:
    raw = decode_base64url(authenticator_data_b64, "authenticatorData")
    try:
        return AuthenticatorData(raw)
    except _PARSE_ERRORS as e:
        raise _fail("authenticatorData could not be parsed") from e


def verify_client_data(
    client_data: CollectedClientData, expected_type: str, expected_challenge: str, expected_origin: str
) -> None:
    """Check ceremony type, challenge (constant time) and origin."""
    if client_data.type != expected_type:
        raise _fail("Unexpected client data type", received_type=client_data.type)

    if not hmac.compare_digest(websafe_encode(client_data.challenge), expected_challenge):
        raise _fail("Challenge mismatch")

    if client_data.origin != expected_origin:
        raise _fail("Origin mismatch", received_origin=client_data.origin, expected_origin=expected_origin)


def verify_authenticator_data(auth_data: AuthenticatorData, rp_id: str, require_user_verification: bool) -> None:
    """Check the RP ID hash and the user-present / user-verified flags."""
    if not hmac.compare_digest(auth_data.rp_id_hash, sha256(rp_id.encode("utf-8"))):
        raise _fail("RP ID hash mismatch")

    if not auth_data.is_user_present():
        raise _fail("User presence flag not set")

    if require_user_verification and not auth_data.is_user_verified():
        raise _fail("User verification required but not performed")


@log_performance("verify_attestation_statement")
def verify_attestation_statement(attestation_object: AttestationObject, client_data_hash: bytes) -> None:
    fmt = attestation_object.fmt
    try:
        Attestation.for_type(fmt)().verify(attestation_object.att_stmt, attestation_object.auth_data, client_data_hash)
    except UnsupportedType as e:
        raise _fail(f"Unsupported attestation format: {fmt}") from e
    except (InvalidData, InvalidSignature) as e:
        raise _fail(f"Attestation statement invalid: {e}", fmt=fmt) from e
    except _PARSE_ERRORS as e:
        raise _fail(f"Attestation statement malformed: {e}", fmt=fmt) from e


def key_algorithm(public_key: CoseKey) -> Optional[int]:
    return public_key.get(COSE_KEY_PARAM_ALG)


def encode_public_key(public_key: CoseKey) -> str:
    """Serialize a COSE key for storage (CBOR, then base64url)."""
    return websafe_encode(cbor.encode(dict(public_key)))


def load_public_key(encoded: str) -> CoseKey:
    try:
        return CoseKey.parse(cbor.decode(websafe_decode(encoded)))
    except _PARSE_ERRORS as e:
        logger.error("Stored public key could not be decoded: %s", e)
        raise _fail("Stored public key is unreadable") from e


@log_performance("verify_assertion_signature")
def verify_assertion_signature(
    public_key: CoseKey, authenticator_data: bytes, client_data_hash: bytes, signature: bytes
) -> None:
    """Verify ``signature`` over ``authenticatorData || SHA-256(clientDataJSON)``."""
    try:
        public_key.verify(authenticator_data + client_data_hash, signature)
    except CryptographyInvalidSignature as e:
        raise _fail("Signature verification failed") from e
    except NotImplementedError as e:
        raise _fail(f"Unsupported key algorithm: {key_algorithm(public_key)}") from e
    except _PARSE_ERRORS as e:
        raise _fail("Signature could not be checked") from e
