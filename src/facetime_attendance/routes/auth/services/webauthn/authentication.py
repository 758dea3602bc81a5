"""
WebAuthn authentication service for assertion verification.

Verifies ``navigator.credentials.get()`` responses against the stored
authenticator and enforces a strictly increasing signature counter.
"""

from typing import Any, Dict, Union

from fido2.webauthn import CollectedClientData

from facetime_attendance.managers.credential_store import CredentialStore
from facetime_attendance.managers.logging_manager import get_logger
from facetime_attendance.models.user_models import Authenticator
from facetime_attendance.routes.auth.models import AuthenticationCredential, AuthenticationResult, coerce_payload
from facetime_attendance.routes.auth.services.webauthn import crypto
from facetime_attendance.routes.auth.services.webauthn.challenge import ChallengeCache
from facetime_attendance.routes.auth.services.webauthn.relying_party import RelyingPartyConfig
from facetime_attendance.utils.error_handling import (
    AttendanceError,
    AuthenticatorNotFoundError,
    InputError,
    NotFoundError,
    VerificationFailedError,
)
from facetime_attendance.utils.logging_utils import log_error_with_context, log_performance, log_security_event

logger = get_logger(prefix="[WebAuthn Authentication]")


def check_counter(stored: int, reported: int) -> None:
    """
    Reject a signature counter that did not advance.

    Authenticators without counter support always report 0; that case is
    accepted only while the stored counter is also 0.
    """
    if stored == 0 and reported == 0:
        return
    if reported <= stored:
        raise VerificationFailedError(
            f"Signature counter did not increase (stored {stored}, received {reported}); possible cloned authenticator"
        )


class AuthenticationCeremony:
    def __init__(self, store: CredentialStore, challenges: ChallengeCache, relying_party: RelyingPartyConfig):
        self._store = store
        self._challenges = challenges
        self._rp = relying_party

    @log_performance("webauthn_authentication_begin")
    async def begin(self, username: str) -> Dict[str, Any]:
        """Generate credential request options listing the user's authenticators."""
        if not username or not username.strip():
            raise InputError("Username is required")

        account = await self._store.get_by_name(username)
        if account is None:
            log_security_event(event_type="webauthn_authentication_begin", user_id=username, success=False)
            raise NotFoundError(f"User '{username}' not found")
        if not account.authenticators:
            log_security_event(
                event_type="webauthn_authentication_begin",
                user_id=username,
                success=False,
                details={"error": "no authenticators"},
            )
            raise NotFoundError(f"User '{username}' has no registered authenticators")

        challenge = await self._challenges.issue(username)
        allow_credentials = [
            {"id": authenticator.credential_id, "type": "public-key", "transports": authenticator.transports}
            for authenticator in account.authenticators
        ]

        logger.info("Authentication options issued for user '%s' (%d credentials)", username, len(allow_credentials))
        log_security_event(
            event_type="webauthn_authentication_begin",
            user_id=username,
            details={"allowed_credentials": len(allow_credentials), "challenge_prefix": challenge[:8] + "..."},
        )
        return {
            "challenge": challenge,
            "timeout": self._rp.timeout_ms,
            "rpId": self._rp.id,
            "allowCredentials": allow_credentials,
            "userVerification": "preferred",
        }

    @log_performance("webauthn_authentication_complete")
    async def complete(
        self, username: str, response: Union[AuthenticationCredential, Dict[str, Any]]
    ) -> AuthenticationResult:
        """
        Verify an assertion response and advance the stored counter.

        The authenticator is looked up before the challenge is consumed, so an
        unknown credential ID leaves the user's challenge in place.

        Raises:
            InputError: malformed username or payload
            NotFoundError: unknown user
            AuthenticatorNotFoundError: credential not registered to the user
            ChallengeNotFoundError: no live challenge for the user
            VerificationFailedError: any assertion check or the counter check failed, or the counter
                could not be stored because it advanced concurrently or the user changed
        """
        if not username or not username.strip():
            raise InputError("Username is required")
        credential = coerce_payload(AuthenticationCredential, response)

        account = await self._store.get_by_name(username)
        if account is None:
            raise NotFoundError(f"User '{username}' not found")

        authenticator = account.find_authenticator(credential.id.rstrip("="))
        if authenticator is None:
            log_security_event(
                event_type="webauthn_authentication_complete",
                user_id=username,
                success=False,
                details={"error": "unknown credential", "credential_id_prefix": credential.id[:12]},
            )
            raise AuthenticatorNotFoundError()

        expected_challenge = await self._challenges.require(username)

        try:
            new_counter = self._verify(credential, authenticator, expected_challenge)
        except AttendanceError as e:
            log_security_event(
                event_type="webauthn_authentication_complete",
                user_id=username,
                success=False,
                details={"error": e.message, "credential_id_prefix": authenticator.credential_id[:12]},
            )
            raise
        except Exception as e:
            log_error_with_context(e, context={"username": username}, operation="webauthn_authentication_complete")
            raise

        updated = await self._store.update_counter(
            username, authenticator.credential_id, new_counter, require_increase=self._rp.reject_counter_regression
        )
        if not updated:
            log_security_event(
                event_type="webauthn_authentication_complete",
                user_id=username,
                success=False,
                details={
                    "error": "counter not stored",
                    "credential_id_prefix": authenticator.credential_id[:12],
                    "counter": new_counter,
                },
            )
            raise VerificationFailedError(
                "Signature counter was not stored: the authenticator changed or was used concurrently"
            )

        logger.info("User '%s' authenticated with %s...", username, authenticator.credential_id[:12])
        log_security_event(
            event_type="webauthn_authentication_complete",
            user_id=username,
            success=True,
            details={"credential_id_prefix": authenticator.credential_id[:12], "counter": new_counter},
        )
        return AuthenticationResult(verified=True, credential_id=authenticator.credential_id, counter=new_counter)

    def _verify(
        self, credential: AuthenticationCredential, authenticator: Authenticator, expected_challenge: str
    ) -> int:
        client_data = crypto.parse_client_data(credential.response.client_data_json)
        crypto.verify_client_data(
            client_data, CollectedClientData.TYPE.GET.value, expected_challenge, self._rp.origin
        )

        auth_data = crypto.parse_authenticator_data(credential.response.authenticator_data)
        crypto.verify_authenticator_data(auth_data, self._rp.id, self._rp.require_user_verification)

        public_key = crypto.load_public_key(authenticator.public_key)
        signature = crypto.decode_base64url(credential.response.signature, "signature")
        crypto.verify_assertion_signature(public_key, bytes(auth_data), client_data.hash, signature)

        if self._rp.reject_counter_regression:
            check_counter(authenticator.counter, auth_data.counter)
        elif auth_data.counter <= authenticator.counter and auth_data.counter != 0:
            logger.warning(
                "Counter for %s... did not increase (stored %d, received %d)",
                authenticator.credential_id[:12],
                authenticator.counter,
                auth_data.counter,
            )
        return auth_data.counter
