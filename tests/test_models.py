"""
Tests for the user, authenticator and WebAuthn wire models.
"""

from pydantic import ValidationError
import pytest

from facetime_attendance.models.user_models import Authenticator, UserAccount, filter_transports
from facetime_attendance.routes.auth.models import (
    AuthenticationResult,
    LoginVerifyRequest,
    RegistrationCredential,
    coerce_payload,
)
from facetime_attendance.routes.users.models import EditUserRequest, RegisterUserRequest
from facetime_attendance.utils.error_handling import InputError


def registration_payload(**overrides):
    payload = {
        "id": "Y3JlZC0x",
        "rawId": "Y3JlZC0x",
        "type": "public-key",
        "response": {"clientDataJSON": "e30", "attestationObject": "oA", "transports": ["internal"]},
    }
    payload.update(overrides)
    return payload


class TestUserModels:
    def test_filter_transports(self):
        assert filter_transports(["usb", "warp-drive", "usb", 7, "nfc"]) == ["usb", "nfc"]
        assert filter_transports(None) == []

    def test_filter_transports_requires_list(self):
        with pytest.raises(ValueError):
            filter_transports("usb")

    def test_authenticator_aliases(self):
        authenticator = Authenticator.model_validate(
            {"credentialID": "abc", "credentialPublicKey": "def", "counter": 3, "transports": ["ble", "?"]}
        )

        assert authenticator.credential_id == "abc"
        assert authenticator.transports == ["ble"]
        response = authenticator.to_response()
        assert response["credentialID"] == "abc"
        assert response["credentialPublicKey"] == "def"
        assert isinstance(response["created_at"], str)
        assert "credential_id" in authenticator.to_document()

    def test_negative_counter_rejected(self):
        with pytest.raises(ValidationError):
            Authenticator(credential_id="abc", public_key="def", counter=-1)

    def test_account_from_document_drops_object_id(self):
        account = UserAccount.from_document(
            {
                "_id": "65f0c0ffee",
                "name": "alice",
                "faceDescriptor": [0.1],
                "authenticators": [{"credential_id": "abc", "public_key": "def", "counter": 1}],
            }
        )

        assert account.descriptor == [0.1]
        assert account.find_authenticator("abc").counter == 1
        assert account.find_authenticator("zzz") is None
        assert set(account.to_response()) == {"name", "descriptor", "authenticators"}

    @pytest.mark.parametrize("name", ["", "   "])
    def test_blank_name_rejected(self, name):
        with pytest.raises(ValidationError):
            UserAccount(name=name)

    @pytest.mark.parametrize("descriptor", [[], [float("nan")], [float("inf"), 0.1]])
    def test_invalid_descriptor_rejected(self, descriptor):
        with pytest.raises(ValidationError):
            UserAccount(name="alice", descriptor=descriptor)


class TestRequestModels:
    def test_register_user_request_allows_missing_fields(self):
        request = RegisterUserRequest.model_validate({})

        assert request.name is None
        assert request.descriptor is None

    def test_edit_user_request_aliases(self):
        request = EditUserRequest.model_validate({"oldName": "a", "newName": "b"})

        assert (request.old_name, request.new_name) == ("a", "b")

    def test_registration_credential_parses(self):
        credential = RegistrationCredential.model_validate(registration_payload())

        assert credential.response.client_data_json == "e30"
        assert credential.response.transports == ["internal"]

    def test_raw_id_must_match_id(self):
        with pytest.raises(ValidationError):
            RegistrationCredential.model_validate(registration_payload(rawId="b3RoZXI"))

    def test_type_must_be_public_key(self):
        with pytest.raises(ValidationError):
            RegistrationCredential.model_validate(registration_payload(type="password"))

    def test_non_base64url_rejected(self):
        with pytest.raises(ValidationError):
            RegistrationCredential.model_validate(registration_payload(id="not base64!", rawId=None))

    def test_login_request_alias(self):
        request = LoginVerifyRequest.model_validate(
            {
                "username": "alice",
                "authResp": {
                    "id": "Y3JlZC0x",
                    "type": "public-key",
                    "response": {"clientDataJSON": "e30", "authenticatorData": "AA", "signature": "AA"},
                },
            }
        )

        assert request.auth_resp.response.user_handle is None

    def test_authentication_result_dump(self):
        result = AuthenticationResult(verified=True, credential_id="abc", counter=4)

        assert result.model_dump(by_alias=True) == {"verified": True, "credentialID": "abc", "counter": 4}


class TestCoercePayload:
    def test_passes_models_through(self):
        credential = RegistrationCredential.model_validate(registration_payload())

        assert coerce_payload(RegistrationCredential, credential) is credential

    def test_dict_is_validated(self):
        assert isinstance(coerce_payload(RegistrationCredential, registration_payload()), RegistrationCredential)

    @pytest.mark.parametrize("payload", [None, "string", ["list"], {"id": "abc"}])
    def test_bad_payloads_become_input_errors(self, payload):
        with pytest.raises(InputError):
            coerce_payload(RegistrationCredential, payload)
