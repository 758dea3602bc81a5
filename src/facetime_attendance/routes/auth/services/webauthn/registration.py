"""
WebAuthn registration service for credential enrollment.

``begin`` builds the ``PublicKeyCredentialCreationOptions`` for a user and
issues a challenge; ``complete`` verifies the browser's attestation response
against that challenge and stores the new authenticator.
"""

import secrets
from typing import Any, Dict, Union

from fido2.utils import websafe_encode
from fido2.webauthn import CollectedClientData

from facetime_attendance.managers.credential_store import CredentialStore
from facetime_attendance.managers.logging_manager import get_logger
from facetime_attendance.models.user_models import Authenticator
from facetime_attendance.routes.auth.models import RegistrationCredential, RegistrationResult, coerce_payload
from facetime_attendance.routes.auth.services.webauthn import crypto
from facetime_attendance.routes.auth.services.webauthn.challenge import ChallengeCache
from facetime_attendance.routes.auth.services.webauthn.relying_party import RelyingPartyConfig
from facetime_attendance.utils.error_handling import AttendanceError, InputError, VerificationFailedError
from facetime_attendance.utils.logging_utils import log_error_with_context, log_performance, log_security_event

logger = get_logger(prefix="[WebAuthn Registration]")

USER_HANDLE_BYTES = 16


class RegistrationCeremony:
    def __init__(self, store: CredentialStore, challenges: ChallengeCache, relying_party: RelyingPartyConfig):
        self._store = store
        self._challenges = challenges
        self._rp = relying_party

    @log_performance("webauthn_registration_begin")
    async def begin(self, username: str) -> Dict[str, Any]:
        """
        Generate credential creation options for ``username``.

        Unknown users are allowed; they are created when the first
        authenticator is stored. Credentials the user already owns are listed
        in ``excludeCredentials`` so the browser refuses to register them twice.
        """
        if not username or not username.strip():
            raise InputError("Username is required")

        account = await self._store.get_by_name(username)
        authenticators = account.authenticators if account else []
        exclude_credentials = [
            {"id": authenticator.credential_id, "type": "public-key", "transports": authenticator.transports}
            for authenticator in authenticators
        ]

        challenge = await self._challenges.issue(username)

        options = {
            "challenge": challenge,
            "rp": {"name": self._rp.name, "id": self._rp.id},
            "user": {
                # A fresh opaque handle each time; the server keys users by name.
                "id": secrets.token_urlsafe(USER_HANDLE_BYTES),
                "name": username,
                "displayName": username,
            },
            "pubKeyCredParams": [{"alg": alg, "type": "public-key"} for alg in crypto.SUPPORTED_ALGORITHMS],
            "timeout": self._rp.timeout_ms,
            "attestation": "none",
            "excludeCredentials": exclude_credentials,
            "authenticatorSelection": {
                "residentKey": "discouraged",
                "requireResidentKey": False,
                "userVerification": "preferred",
            },
        }

        logger.info(
            "Registration options issued for user '%s' (excluded %d existing credentials)",
            username,
            len(exclude_credentials),
        )
        log_security_event(
            event_type="webauthn_registration_begin",
            user_id=username,
            details={"excluded_credentials": len(exclude_credentials), "challenge_prefix": challenge[:8] + "..."},
        )
        return options

    @log_performance("webauthn_registration_complete")
    async def complete(
        self, username: str, response: Union[RegistrationCredential, Dict[str, Any]]
    ) -> RegistrationResult:
        """
        Verify an attestation response and store the new authenticator.

        The challenge is consumed before verification starts, so a failed
        attempt always requires a new ``begin``. Nothing is stored unless every
        check passes.

        Raises:
            InputError: malformed username or payload
            ChallengeNotFoundError: no live challenge for the user
            VerificationFailedError: any attestation check failed
            ConflictError: the credential ID is already registered
        """
        if not username or not username.strip():
            raise InputError("Username is required")
        credential = coerce_payload(RegistrationCredential, response)

        expected_challenge = await self._challenges.require(username)

        try:
            authenticator = self._verify(credential, expected_challenge)
            await self._store.append_authenticator(username, authenticator)
        except AttendanceError as e:
            log_security_event(
                event_type="webauthn_registration_complete",
                user_id=username,
                success=False,
                details={"error": e.message, "credential_id_prefix": credential.id[:12]},
            )
            raise
        except Exception as e:
            log_error_with_context(e, context={"username": username}, operation="webauthn_registration_complete")
            raise

        logger.info("Authenticator %s... registered for user '%s'", authenticator.credential_id[:12], username)
        log_security_event(
            event_type="webauthn_registration_complete",
            user_id=username,
            success=True,
            details={"credential_id_prefix": authenticator.credential_id[:12], "transports": authenticator.transports},
        )
        return RegistrationResult(verified=True, authenticator=authenticator.to_response())

    def _verify(self, credential: RegistrationCredential, expected_challenge: str) -> Authenticator:
        client_data = crypto.parse_client_data(credential.response.client_data_json)
        crypto.verify_client_data(
            client_data, CollectedClientData.TYPE.CREATE.value, expected_challenge, self._rp.origin
        )

        attestation_object = crypto.parse_attestation_object(credential.response.attestation_object)
        auth_data = attestation_object.auth_data
        crypto.verify_authenticator_data(auth_data, self._rp.id, self._rp.require_user_verification)

        credential_data = auth_data.credential_data
        if credential_data is None:
            raise VerificationFailedError("Attested credential data missing")

        credential_id = websafe_encode(credential_data.credential_id)
        if credential_id != credential.id.rstrip("="):
            raise VerificationFailedError("Credential ID does not match response id")

        algorithm = crypto.key_algorithm(credential_data.public_key)
        if algorithm not in crypto.SUPPORTED_ALGORITHMS:
            raise VerificationFailedError(f"Unsupported public key algorithm: {algorithm}")

        crypto.verify_attestation_statement(attestation_object, client_data.hash)

        return Authenticator(
            credential_id=credential_id,
            public_key=crypto.encode_public_key(credential_data.public_key),
            counter=auth_data.counter,
            transports=credential.response.transports,
        )
