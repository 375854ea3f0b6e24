"""Shared fixtures for the vault test-suite."""
import os

import pytest
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from nacl.secret import SecretBox

from masterkey.vault import Credential, Vault
from masterkey.vault.crypto import serialize_credentials


@pytest.fixture(autouse=True)
def cheap_kdf(monkeypatch):
    """Keep Argon2id fast: 1 pass, 1 MiB, 1 lane."""
    monkeypatch.setenv("MASTERKEY_ARGON_TIME", "1")
    monkeypatch.setenv("MASTERKEY_ARGON_MEMORY", "1024")
    monkeypatch.setenv("MASTERKEY_ARGON_LANES", "1")


@pytest.fixture
def vault():
    """Create a fresh, empty vault."""
    v = Vault.new("testpass")
    yield v
    v.close()


@pytest.fixture
def vault_path(tmp_path):
    """Path of a vault file inside a temporary directory."""
    return str(tmp_path / "pass.db")


@pytest.fixture
def test_credential():
    return Credential(username="testuser", password="testpass")


def _scrypt(passphrase: str, salt: bytes) -> bytes:
    return Scrypt(salt=salt, length=32, n=16384, r=8, p=1).derive(
        passphrase.encode("utf-8")
    )


@pytest.fixture
def legacy_v2_file():
    """Factory writing a ``salt || nonce || secretbox`` vault file."""
    def _write(path: str, passphrase: str, credentials: dict) -> bytes:
        salt = os.urandom(24)
        nonce = os.urandom(24)
        box = SecretBox(_scrypt(passphrase, salt))
        raw = salt + nonce + box.encrypt(
            serialize_credentials(credentials), nonce,
        ).ciphertext
        with open(path, "wb") as fh:
            fh.write(raw)
        return raw
    return _write


@pytest.fixture
def legacy_v1_file():
    """Factory writing a ``nonce || secretbox`` vault file (nonce is the salt)."""
    def _write(path: str, passphrase: str, credentials: dict) -> bytes:
        nonce = os.urandom(24)
        box = SecretBox(_scrypt(passphrase, nonce))
        raw = nonce + box.encrypt(
            serialize_credentials(credentials), nonce,
        ).ciphertext
        with open(path, "wb") as fh:
            fh.write(raw)
        return raw
    return _write
