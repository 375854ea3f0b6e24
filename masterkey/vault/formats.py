"""
Vault Formats — On-disk layouts, loader strategies and atomic persistence.

Layouts, newest first:
- current:   JSON {version, time_cost, memory_cost, parallelism, salt, nonce, data}
             Argon2id + XChaCha20-Poly1305, parameters embedded
- legacy-v2: [salt 24B][nonce 24B][secretbox]  scrypt(salt) + XSalsa20-Poly1305
- legacy-v1: [nonce 24B][secretbox]            scrypt(nonce) + XSalsa20-Poly1305

Loading tries each strategy in ``LOADERS`` order. Supporting a new layout
means prepending a strategy; old ones are never removed.

Security Note:
    A strategy that parses but does not authenticate reports
    ``AuthenticationFailure`` without saying why. Wrong passphrase and
    corrupt file must stay indistinguishable.
"""
import os
import base64
import logging
import tempfile
from collections.abc import Callable
from dataclasses import dataclass

import orjson
from argon2.exceptions import HashingError
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .config import KDFParams
from .crypto import (
    NONCE_SIZE,
    TAG_SIZE,
    derive_key,
    derive_legacy_key,
    deserialize_credentials,
    open_sealed,
    open_secretbox,
)
from .exceptions import AuthenticationFailure, MalformedFileError, VaultIOError
from .models import CredentialSet

logger = logging.getLogger("masterkey.vault")

CURRENT_VERSION = 3
LEGACY_SALT_SIZE = 24
TEMP_PREFIX = "masterkey-temp"

PROVENANCE_CURRENT = "current"
PROVENANCE_LEGACY_V2 = "legacy-v2"
PROVENANCE_LEGACY_V1 = "legacy-v1"


# ---------------------------------------------------------------------------
# Current layout
# ---------------------------------------------------------------------------

class VaultFile(BaseModel):
    """Self-describing record of the current on-disk layout."""

    version: int = CURRENT_VERSION
    time_cost: int = Field(ge=1, le=0xFFFFFFFF)
    memory_cost: int = Field(ge=8, le=0xFFFFFFFF)
    parallelism: int = Field(ge=1, le=255)
    salt: bytes
    nonce: bytes
    data: bytes

    @field_validator("salt", "nonce", "data", mode="before")
    @classmethod
    def decode_base64(cls, v):
        """Binary fields travel as base64 strings inside the JSON document."""
        if isinstance(v, str):
            return base64.b64decode(v, validate=True)
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v != CURRENT_VERSION:
            raise ValueError(f"unsupported vault version {v}")
        return v

    @field_validator("salt")
    @classmethod
    def validate_salt(cls, v: bytes) -> bytes:
        if not 16 <= len(v) <= 24:
            raise ValueError(f"salt must be 16-24 bytes, got {len(v)}")
        return v

    @field_validator("nonce")
    @classmethod
    def validate_nonce(cls, v: bytes) -> bytes:
        if len(v) != NONCE_SIZE:
            raise ValueError(f"nonce must be {NONCE_SIZE} bytes, got {len(v)}")
        return v

    @model_validator(mode="after")
    def validate_memory_per_lane(self) -> "VaultFile":
        """Argon2 requires at least 8 KiB of memory per lane."""
        if self.memory_cost < 8 * self.parallelism:
            raise ValueError(
                f"memory_cost {self.memory_cost} KiB is below 8 KiB per lane"
            )
        return self

    @property
    def kdf_params(self) -> KDFParams:
        return KDFParams(
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
        )

    def to_bytes(self) -> bytes:
        """Encode the record as a JSON document."""
        return orjson.dumps({
            "version": self.version,
            "time_cost": self.time_cost,
            "memory_cost": self.memory_cost,
            "parallelism": self.parallelism,
            "salt": base64.b64encode(self.salt).decode("ascii"),
            "nonce": base64.b64encode(self.nonce).decode("ascii"),
            "data": base64.b64encode(self.data).decode("ascii"),
        })

    @classmethod
    def from_bytes(cls, raw: bytes) -> "VaultFile":
        """Parse a JSON document into a VaultFile.

        Raises:
            MalformedFileError: If raw is not a current-layout record.
        """
        try:
            parsed = orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            raise MalformedFileError("not a current-layout vault file") from err
        if not isinstance(parsed, dict):
            raise MalformedFileError("not a current-layout vault file")
        try:
            return cls.model_validate(parsed)
        except ValidationError as err:
            raise MalformedFileError(
                f"invalid current-layout vault file: {err.error_count()} error(s)"
            ) from err


def dump_current(params: KDFParams, salt: bytes, nonce: bytes, data: bytes) -> bytes:
    """Encode vault state in the current layout."""
    return VaultFile(
        time_cost=params.time_cost,
        memory_cost=params.memory_cost,
        parallelism=params.parallelism,
        salt=salt,
        nonce=nonce,
        data=data,
    ).to_bytes()


# ---------------------------------------------------------------------------
# Loader strategies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LoadedVault:
    """Result of a successful loader strategy."""

    credentials: CredentialSet
    provenance: str
    # None for legacy layouts, which carry no KDF parameters.
    params: KDFParams | None = None

    @property
    def is_legacy(self) -> bool:
        return self.provenance != PROVENANCE_CURRENT


Loader = Callable[[bytes, str], LoadedVault]


def load_current(raw: bytes, passphrase: str) -> LoadedVault:
    """Parse and decrypt the current layout."""
    vf = VaultFile.from_bytes(raw)
    try:
        params = vf.kdf_params
        key = derive_key(passphrase, vf.salt, params)
    except (ValidationError, HashingError) as err:
        # unusable parameters, e.g. a memory cost that cannot be allocated
        raise MalformedFileError(f"unusable KDF parameters in vault file: {err}") from err
    plaintext = open_sealed(key, vf.nonce, vf.data)
    return LoadedVault(
        credentials=deserialize_credentials(plaintext),
        provenance=PROVENANCE_CURRENT,
        params=params,
    )


def load_legacy_v2(raw: bytes, passphrase: str) -> LoadedVault:
    """Parse and decrypt ``salt(24) || nonce(24) || secretbox``."""
    header = LEGACY_SALT_SIZE + NONCE_SIZE
    if len(raw) < header + TAG_SIZE:
        raise MalformedFileError("too short for the legacy salt/nonce layout")
    salt = raw[:LEGACY_SALT_SIZE]
    nonce = raw[LEGACY_SALT_SIZE:header]
    key = derive_legacy_key(passphrase, salt)
    plaintext = open_secretbox(key, nonce, raw[header:])
    return LoadedVault(
        credentials=deserialize_credentials(plaintext),
        provenance=PROVENANCE_LEGACY_V2,
    )


def load_legacy_v1(raw: bytes, passphrase: str) -> LoadedVault:
    """Parse and decrypt ``nonce(24) || secretbox``; the nonce is also the salt."""
    if len(raw) < NONCE_SIZE + TAG_SIZE:
        raise MalformedFileError("too short for the legacy nonce layout")
    nonce = raw[:NONCE_SIZE]
    key = derive_legacy_key(passphrase, nonce)
    plaintext = open_secretbox(key, nonce, raw[NONCE_SIZE:])
    return LoadedVault(
        credentials=deserialize_credentials(plaintext),
        provenance=PROVENANCE_LEGACY_V1,
    )


LOADERS: tuple[Loader, ...] = (
    load_current,
    load_legacy_v2,
    load_legacy_v1,
)


def load(raw: bytes, passphrase: str, loaders: tuple[Loader, ...] = LOADERS) -> LoadedVault:
    """Try each loader strategy in order; the first that authenticates wins.

    Raises:
        AuthenticationFailure: If some layout parsed but none authenticated.
        MalformedFileError: If no layout parsed at all.
    """
    parsed_any = False
    for loader in loaders:
        try:
            loaded = loader(raw, passphrase)
        except AuthenticationFailure:
            parsed_any = True
            logger.debug("Vault layout %s did not authenticate", loader.__name__)
            continue
        except MalformedFileError as err:
            logger.debug("Vault layout %s did not parse: %s", loader.__name__, err)
            continue
        logger.debug("Vault loaded with layout %s", loaded.provenance)
        return loaded
    if parsed_any:
        raise AuthenticationFailure(
            "provided decryption key is incorrect or the vault is corrupt"
        )
    raise MalformedFileError("file does not match any known vault layout")


# ---------------------------------------------------------------------------
# Disk I/O
# ---------------------------------------------------------------------------

def read_vault_file(path: str) -> bytes:
    """Read the raw bytes of a vault file.

    Raises:
        VaultIOError: If the file cannot be read.
    """
    try:
        with open(path, "rb") as fh:
            return fh.read()
    except OSError as err:
        raise VaultIOError(err.errno, f"cannot read vault file: {err.strerror}", path) from err


def write_atomic(path: str, payload: bytes) -> None:
    """Write payload to path atomically.

    The payload goes to a temp file in the target's directory, is flushed
    to stable storage, then renamed over the target. Readers see either the
    previous file or the new one, never a partial write.

    Raises:
        VaultIOError: If the temp file cannot be written or renamed. The
            target is left untouched; after a rename failure the temp file
            may remain on disk.
    """
    directory = os.path.dirname(os.path.abspath(path))
    try:
        fd, temp_path = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=directory)
    except OSError as err:
        raise VaultIOError(err.errno, f"cannot create temp file: {err.strerror}", directory) from err

    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
    except OSError as err:
        try:
            os.remove(temp_path)
        except OSError:
            logger.warning("Could not remove temp file %s", temp_path)
        raise VaultIOError(err.errno, f"cannot write temp file: {err.strerror}", temp_path) from err

    try:
        os.replace(temp_path, path)
    except OSError as err:
        logger.error("Rename of %s over %s failed; temp file left behind", temp_path, path)
        raise VaultIOError(err.errno, f"cannot replace vault file: {err.strerror}", path) from err
