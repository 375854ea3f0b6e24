"""Vault — Passphrase-protected credential store in a single file.

Security Note (Threat Model):
    Credentials are decrypted in process memory for the duration of each
    vault operation, and the derived key stays in memory until ``close()``.
    A memory dump of the process while a vault is open could expose them.
    This is an accepted limitation; protecting against an attacker with code
    execution on the host is out of scope.
"""

from .vault import Vault
from .models import Credential, CredentialSet
from .config import KDFParams, VaultConfig
from .filelock import FileLock
from .exceptions import (
    VaultError,
    NotFoundError,
    MetaNotFoundError,
    AlreadyExistsError,
    MetaAlreadyExistsError,
    AuthenticationFailure,
    LockedError,
    VaultIOError,
    MalformedFileError,
    MergeConflictError,
    VaultClosedError,
)

__all__ = [
    "Vault",
    "Credential",
    "CredentialSet",
    "KDFParams",
    "VaultConfig",
    "FileLock",
    "VaultError",
    "NotFoundError",
    "MetaNotFoundError",
    "AlreadyExistsError",
    "MetaAlreadyExistsError",
    "AuthenticationFailure",
    "LockedError",
    "VaultIOError",
    "MalformedFileError",
    "MergeConflictError",
    "VaultClosedError",
]
