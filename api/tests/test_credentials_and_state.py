"""
Tests for credential encryption and OAuth state handling.

Run: cd api && python -m pytest tests/test_credentials_and_state.py -v
"""

import base64
import json
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest
from cryptography.fernet import Fernet

from integrations.core.oauth import decode_state, encode_state, verify_state
from integrations.core.tokens import CredentialStore
from integrations.providers import build_provider_registry
from services.errors import AuthorizationError, DecryptionError, ValidationError


# =============================================================================
# CredentialStore
# =============================================================================

def test_encrypt_decrypt_round_trip():
    store = CredentialStore(Fernet.generate_key().decode())
    payload = {"access_token": "xoxb-1", "scope": "channels:read", "nested": {"n": [1, 2]}}

    token = store.encrypt(payload)

    assert isinstance(token, str)
    assert "xoxb-1" not in token
    assert store.decrypt(token) == payload
    print("✅ credential round trip: PASSED")


def test_decrypt_with_other_key_fails():
    token = CredentialStore(Fernet.generate_key().decode()).encrypt({"access_token": "a"})
    other = CredentialStore(Fernet.generate_key().decode())

    with pytest.raises(DecryptionError):
        other.decrypt(token)


@pytest.mark.parametrize("blob", ["", "not-a-token", "gAAAAA-truncated"])
def test_decrypt_malformed_input_fails(blob):
    store = CredentialStore(Fernet.generate_key().decode())
    with pytest.raises(DecryptionError):
        store.decrypt(blob)


def test_decrypt_non_json_plaintext_fails():
    key = Fernet.generate_key()
    token = Fernet(key).encrypt(b"plain text, not json").decode()

    with pytest.raises(DecryptionError):
        CredentialStore(key.decode()).decrypt(token)


def test_missing_key_is_a_configuration_error():
    with patch.dict("os.environ", {}, clear=True):
        with pytest.raises(ValueError):
            CredentialStore()


def test_key_read_from_environment():
    key = CredentialStore.generate_key()
    with patch.dict("os.environ", {"INTEGRATION_ENCRYPTION_KEY": key}):
        store = CredentialStore()
    assert CredentialStore(key).decrypt(store.encrypt({"a": 1})) == {"a": 1}


# =============================================================================
# OAuth state
# =============================================================================

def test_state_round_trip():
    state = encode_state("team-1", "user-1")

    assert json.loads(base64.b64decode(state)) == {"teamId": "team-1", "userId": "user-1"}
    assert decode_state(state) == ("team-1", "user-1")


@pytest.mark.parametrize("state", [
    "%%%not-base64%%%",
    base64.b64encode(b"not json").decode(),
    base64.b64encode(json.dumps({"teamId": "t"}).encode()).decode(),
    base64.b64encode(json.dumps(["t", "u"]).encode()).decode(),
])
def test_malformed_state_is_rejected(state):
    with pytest.raises(ValidationError):
        decode_state(state)


def test_state_bound_to_caller():
    state = encode_state("team-1", "user-a")

    assert verify_state(state, "user-a") == ("team-1", "user-a")
    with pytest.raises(AuthorizationError):
        verify_state(state, "user-b")


def test_auth_urls_for_different_callers_carry_different_states():
    adapter = build_provider_registry().get("github")

    states = [
        parse_qs(urlparse(adapter.get_auth_url(team, user)).query)["state"][0]
        for team, user in [("team-1", "user-1"), ("team-2", "user-2")]
    ]

    assert states[0] != states[1]
    assert decode_state(states[0]) == ("team-1", "user-1")
    assert decode_state(states[1]) == ("team-2", "user-2")
