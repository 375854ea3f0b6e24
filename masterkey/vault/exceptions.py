"""
Vault Exceptions — Typed failures raised by the vault engine.

Every failure surfaced to callers derives from ``VaultError``. Some kinds
also subclass the closest builtin exception so that generic handlers
(``except KeyError``, ``except OSError``) keep working.

Security Note:
    ``AuthenticationFailure`` covers both a wrong passphrase and a corrupt
    or tampered file. The two cases are never distinguished.
"""


class VaultError(Exception):
    """Base class for all vault errors."""


class NotFoundError(VaultError, KeyError):
    """A location is not present in the vault."""

    def __str__(self) -> str:
        # KeyError.__str__ quotes its argument.
        return Exception.__str__(self)


class MetaNotFoundError(NotFoundError):
    """A metadata name is not present on a credential."""


class AlreadyExistsError(VaultError):
    """A location is already present in the vault."""


class MetaAlreadyExistsError(AlreadyExistsError):
    """A metadata name is already present on a credential."""


class AuthenticationFailure(VaultError):
    """Wrong passphrase, or corrupted/tampered ciphertext."""


class LockedError(VaultError):
    """The vault file is locked by another handle."""


class VaultIOError(VaultError, OSError):
    """Filesystem-level read/write/rename failure."""


class MalformedFileError(VaultError, ValueError):
    """Data that does not match any known vault layout."""


class MergeConflictError(VaultError):
    """A merged location already exists in the destination vault."""


class VaultClosedError(VaultError, RuntimeError):
    """Operation attempted on a vault after ``close()``."""
