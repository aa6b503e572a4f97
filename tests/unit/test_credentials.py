"""Unit tests for credential encryption."""

import stat

import pytest
from cryptography.fernet import Fernet

from calsync.core.credentials import CredentialCipher, CredentialError, ENCRYPTED_KEY, is_sealed


@pytest.fixture
def cipher():
    return CredentialCipher(Fernet.generate_key())


def test_seal_hides_secret_values(cipher):
    sealed = cipher.seal({"access_token": "ya29.secret"})

    assert is_sealed(sealed)
    assert "ya29.secret" not in sealed[ENCRYPTED_KEY]
    assert cipher.open(sealed) == {"access_token": "ya29.secret"}


def test_empty_credentials_stay_empty(cipher):
    assert cipher.seal({}) is None
    assert cipher.open(None) == {}


def test_plain_credentials_pass_through(cipher):
    assert cipher.open({"api_key": "abc"}) == {"api_key": "abc"}


def test_wrong_key_is_rejected(cipher):
    sealed = cipher.seal({"access_token": "ya29.secret"})
    other = CredentialCipher(Fernet.generate_key())

    with pytest.raises(CredentialError):
        other.open(sealed)


def test_invalid_key_is_rejected():
    with pytest.raises(CredentialError, match="Invalid credentials key"):
        CredentialCipher("not-a-fernet-key")


def test_key_file_is_generated_once(tmp_path):
    key_file = tmp_path / "keys" / "credentials.key"

    first = CredentialCipher.from_key_file(key_file)
    sealed = first.seal({"token": "t"})
    second = CredentialCipher.from_key_file(key_file)

    assert second.open(sealed) == {"token": "t"}
    assert stat.S_IMODE(key_file.stat().st_mode) == 0o600


def test_from_config_without_key_is_none():
    assert CredentialCipher.from_config({'security': {'credentials_key': None}}) is None
    assert CredentialCipher.from_config({}) is None


def test_from_config_with_key():
    key = Fernet.generate_key().decode()

    assert isinstance(CredentialCipher.from_config({'security': {'credentials_key': key}}), CredentialCipher)
