from __future__ import annotations

import base64

import pytest

from account_connect.clients.oauth_state import OAuthStateEncoder
from account_connect.core.errors import StateMismatchError


def test_encode_decode_preserves_payload(state_encoder: OAuthStateEncoder) -> None:
    payload = {"nonce": "n1", "provider": "gmail", "user_id": "u1", "redirect_to": None}

    assert state_encoder.decode(state_encoder.encode(payload)) == payload


def test_tampered_state_is_rejected(state_encoder: OAuthStateEncoder) -> None:
    token = state_encoder.encode({"nonce": "n1", "user_id": "u1"})
    raw = bytearray(base64.urlsafe_b64decode(token))
    raw[-3] ^= 0x01
    tampered = base64.urlsafe_b64encode(bytes(raw)).decode()

    with pytest.raises(StateMismatchError):
        state_encoder.decode(tampered)


def test_state_from_another_secret_is_rejected(state_encoder: OAuthStateEncoder) -> None:
    foreign = OAuthStateEncoder("someone-else").encode({"nonce": "n1"})

    with pytest.raises(StateMismatchError):
        state_encoder.decode(foreign)


@pytest.mark.parametrize("garbage", ["", "not base64!!", "c2hvcnQ="])
def test_malformed_state_is_rejected(state_encoder: OAuthStateEncoder, garbage: str) -> None:
    with pytest.raises(StateMismatchError):
        state_encoder.decode(garbage)


def test_empty_secret_is_refused() -> None:
    with pytest.raises(ValueError):
        OAuthStateEncoder("")
