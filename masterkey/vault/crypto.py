"""
Vault Crypto Core — Key derivation, authenticated encryption, and serialization.

Implements the cryptographic composition of a vault:
- Current layout: Argon2id(passphrase, salt, params) → XChaCha20-Poly1305
- Legacy layouts: scrypt(passphrase, salt, N=16384, r=8, p=1) → XSalsa20-Poly1305
  (NaCl secretbox), read-only

Security Note:
    Never log plaintext, keys or ciphertext values.
    Nonces are random 192-bit; collision probability is negligible, which is
    what makes drawing a fresh random nonce per seal safe.
"""
import os
import logging

import orjson
from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from nacl import bindings
from nacl.exceptions import CryptoError
from nacl.secret import SecretBox
from pydantic import ValidationError

from .config import KDFParams
from .exceptions import AuthenticationFailure, MalformedFileError
from .models import Credential, CredentialSet

logger = logging.getLogger("masterkey.vault")

KEY_LENGTH = 32
NONCE_SIZE = bindings.crypto_aead_xchacha20poly1305_ietf_NPUBBYTES  # 24
TAG_SIZE = bindings.crypto_aead_xchacha20poly1305_ietf_ABYTES  # 16

# Fixed parameters of the legacy (pre-Argon2) layouts.
SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1


def random_bytes(size: int) -> bytes:
    """Return ``size`` bytes from the OS CSPRNG."""
    return os.urandom(size)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(passphrase: str, salt: bytes, params: KDFParams) -> bytes:
    """Derive a 32-byte key from a passphrase using Argon2id.

    Args:
        passphrase: User passphrase.
        salt: Per-vault random salt.
        params: Argon2id time/memory/parallelism costs.

    Returns:
        32-byte derived key.

    Raises:
        ValueError: If salt is empty.
    """
    if not salt:
        raise ValueError("KDF salt must not be empty")
    return hash_secret_raw(
        secret=passphrase.encode("utf-8"),
        salt=salt,
        time_cost=params.time_cost,
        memory_cost=params.memory_cost,
        parallelism=params.parallelism,
        hash_len=KEY_LENGTH,
        type=Type.ID,
    )


def derive_legacy_key(passphrase: str, salt: bytes) -> bytes:
    """Derive a 32-byte key with the fixed scrypt parameters of legacy vaults."""
    if not salt:
        raise ValueError("KDF salt must not be empty")
    kdf = Scrypt(
        salt=salt,
        length=KEY_LENGTH,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
    )
    return kdf.derive(passphrase.encode("utf-8"))


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def seal(key: bytes, nonce: bytes, plaintext: bytes) -> bytes:
    """Encrypt and authenticate plaintext with XChaCha20-Poly1305.

    Format: [encrypted_payload][poly1305 tag 16B]

    Args:
        key: 32-byte key.
        nonce: 24-byte nonce; must never be reused with the same key.
        plaintext: Data to encrypt.

    Returns:
        Ciphertext, ``len(plaintext) + TAG_SIZE`` bytes long.
    """
    if len(key) != KEY_LENGTH:
        raise ValueError(f"key must be {KEY_LENGTH} bytes, got {len(key)}")
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
    return bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(
        plaintext, None, nonce, key,
    )


def open_sealed(key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
    """Verify and decrypt ciphertext produced by :func:`seal`.

    Raises:
        AuthenticationFailure: On any mismatch of key, nonce, ciphertext or tag.
    """
    if (
        len(key) != KEY_LENGTH
        or len(nonce) != NONCE_SIZE
        or len(ciphertext) < TAG_SIZE
    ):
        raise AuthenticationFailure(
            "provided decryption key is incorrect or the vault is corrupt"
        )
    try:
        return bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
            ciphertext, None, nonce, key,
        )
    except CryptoError as err:
        raise AuthenticationFailure(
            "provided decryption key is incorrect or the vault is corrupt"
        ) from err


def open_secretbox(key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
    """Verify and decrypt a legacy NaCl secretbox (XSalsa20-Poly1305).

    Raises:
        AuthenticationFailure: If the box does not authenticate.
    """
    if len(ciphertext) < SecretBox.MACBYTES:
        raise AuthenticationFailure(
            "provided decryption key is incorrect or the vault is corrupt"
        )
    try:
        return SecretBox(key).decrypt(ciphertext, nonce)
    except CryptoError as err:
        raise AuthenticationFailure(
            "provided decryption key is incorrect or the vault is corrupt"
        ) from err


# ---------------------------------------------------------------------------
# Credential set serialization
# ---------------------------------------------------------------------------

def serialize_credentials(credentials: CredentialSet) -> bytes:
    """Serialize a credential set to bytes for sealing.

    Format: {"<location>": {"username": ..., "password": ..., "meta": {...}|null}}

    Returns:
        orjson-encoded bytes.
    """
    return orjson.dumps(
        {location: cred.model_dump() for location, cred in credentials.items()}
    )


def deserialize_credentials(data: bytes) -> CredentialSet:
    """Deserialize bytes produced by :func:`serialize_credentials`.

    Raises:
        MalformedFileError: If the plaintext is not a valid credential mapping.
    """
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise MalformedFileError(f"credential data is not valid JSON: {err}") from err
    if not isinstance(parsed, dict):
        raise MalformedFileError("credential data must be a mapping of locations")
    try:
        return {
            location: Credential.model_validate(record)
            for location, record in parsed.items()
        }
    except ValidationError as err:
        raise MalformedFileError(f"invalid credential record: {err}") from err
