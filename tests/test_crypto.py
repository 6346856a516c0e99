"""
Tests for session key exchange and body encryption.
"""

import pytest

from common.crypto import (
    CryptoError,
    aes_key,
    b64,
    b64d,
    decrypt_body,
    encrypt_body,
    rsa_generate,
    rsa_public_pem,
    rsa_unwrap_key,
    rsa_wrap_key,
)


@pytest.fixture(scope="module")
def rsa_priv():
    return rsa_generate()


def test_key_exchange(rsa_priv):
    """A key wrapped with the public PEM is recovered by the private key."""
    key = aes_key()
    assert len(key) == 32
    wrapped = rsa_wrap_key(rsa_public_pem(rsa_priv), key)
    assert rsa_unwrap_key(rsa_priv, wrapped) == key


@pytest.mark.parametrize("wrapped", ["", "not base64!", b64(b"x" * 256)])
def test_bad_wrapped_key(rsa_priv, wrapped):
    with pytest.raises(CryptoError):
        rsa_unwrap_key(rsa_priv, wrapped)


def test_body_roundtrip_with_unicode():
    key = aes_key()
    body = {"method": "message.sendText", "params": {"content": "xin chào 👋"}}
    sealed = encrypt_body(key, body)
    assert set(sealed["enc"]) == {"n", "c"}
    assert decrypt_body(key, sealed) == body


def test_nonce_is_fresh():
    """Encrypting the same body twice gives different ciphertexts."""
    key = aes_key()
    assert encrypt_body(key, {"a": 1}) != encrypt_body(key, {"a": 1})


def test_tampered_ciphertext_rejected():
    key = aes_key()
    sealed = encrypt_body(key, {"a": 1})
    raw = bytearray(b64d(sealed["enc"]["c"]))
    raw[0] ^= 1
    sealed["enc"]["c"] = b64(bytes(raw))
    with pytest.raises(CryptoError):
        decrypt_body(key, sealed)


@pytest.mark.parametrize("payload", [{}, {"enc": None}, {"enc": {"n": "AAAA"}}, {"enc": {"n": 1, "c": 2}}])
def test_malformed_payload_rejected(payload):
    with pytest.raises(CryptoError):
        decrypt_body(aes_key(), payload)


def test_wrong_key_rejected():
    sealed = encrypt_body(aes_key(), {"a": 1})
    with pytest.raises(CryptoError):
        decrypt_body(aes_key(), sealed)
