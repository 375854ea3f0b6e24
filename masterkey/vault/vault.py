"""
Vault — Encrypted credential store backed by a single file.

Provides the public API of the vault engine:
- ``Vault.new(passphrase)`` — create an empty in-memory vault
- ``Vault.open(filename, passphrase)`` — lock, load, decrypt and re-key a vault
- ``add`` / ``get`` / ``edit`` / ``delete`` — credential CRUD
- ``add_meta`` / ``edit_meta`` / ``delete_meta`` — per-credential metadata
- ``locations`` / ``find`` / ``find_meta`` — enumeration and search
- ``generate`` / ``merge`` / ``load_csv`` / ``change_passphrase``
- ``save(filename)`` — atomically persist the encrypted state
- ``close()`` — zero the key and release the file lock

Every operation decrypts the whole credential set. Mutations apply one
change and re-seal under a freshly drawn nonce; nothing touches disk until
``save``.

Security Note:
    Never log passphrases, keys, passwords or ciphertext. Only log
    locations, counts and lifecycle events. Decrypted credentials exist in
    process memory while an operation runs (see threat model in
    ``__init__.py``).
"""
import os
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO

from .. import pwgen
from . import formats
from .config import KDFParams, VaultConfig
from .crypto import (
    NONCE_SIZE,
    derive_key,
    deserialize_credentials,
    open_sealed,
    random_bytes,
    seal,
    serialize_credentials,
)
from .exceptions import (
    AlreadyExistsError,
    MergeConflictError,
    MetaAlreadyExistsError,
    MetaNotFoundError,
    NotFoundError,
    VaultClosedError,
    VaultIOError,
)
from .filelock import FileLock
from .importer import load_csv
from .models import Credential, CredentialSet

logger = logging.getLogger("masterkey.vault")


class Vault:
    """Encrypted credential vault.

    The credential set is kept sealed in memory with XChaCha20-Poly1305
    under a key derived from the passphrase with Argon2id. The salt is
    rotated every time a vault is opened from disk and the nonce every
    time the set is re-sealed.

    Operations on one handle are serialized by an internal lock; across
    processes, ``open`` takes an advisory lock file and fails fast with
    ``LockedError`` if it is already held.
    """

    def __init__(self, config: VaultConfig | None = None, params: KDFParams | None = None):
        self._config = config if config is not None else VaultConfig.from_env()
        self._params = params if params is not None else self._config.kdf
        self._data = b""
        self._nonce = b""
        self._salt = b""
        self._secret = bytearray(0)
        self._lock: FileLock | None = None
        self._path: str | None = None
        self._provenance: str | None = None
        self._dirty = False
        self._closed = False
        self._mutex = threading.RLock()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return (
            f"<Vault path={self._path!r} {state} "
            f"provenance={self._provenance} dirty={self._dirty}>"
        )

    def __enter__(self) -> "Vault":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def path(self) -> str | None:
        """Absolute path the vault was opened from, if any."""
        return self._path

    @property
    def params(self) -> KDFParams:
        return self._params

    @property
    def provenance(self) -> str | None:
        """Layout the vault was loaded from; None for a new vault."""
        return self._provenance

    @property
    def dirty(self) -> bool:
        """True when in-memory state has changes not yet saved."""
        return self._dirty

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def nonce(self) -> bytes:
        """Nonce of the current sealing; never reused under the same key."""
        return self._nonce

    @property
    def salt(self) -> bytes:
        return self._salt

    # ------------------------------------------------------------------
    # Crypto helpers
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise VaultClosedError("vault is closed")

    def _wipe_secret(self) -> None:
        for i in range(len(self._secret)):
            self._secret[i] = 0

    def _rekey(self, passphrase: str) -> None:
        """Draw a fresh salt and derive a new key from ``passphrase``."""
        salt = random_bytes(self._config.salt_size)
        key = derive_key(passphrase, salt, self._params)
        self._wipe_secret()
        self._salt = salt
        self._secret = bytearray(key)

    def _decrypt(self) -> CredentialSet:
        plaintext = open_sealed(bytes(self._secret), self._nonce, self._data)
        return deserialize_credentials(plaintext)

    def _encrypt(self, credentials: CredentialSet) -> None:
        """Seal ``credentials`` under a freshly drawn nonce."""
        nonce = random_bytes(NONCE_SIZE)
        data = seal(bytes(self._secret), nonce, serialize_credentials(credentials))
        self._nonce = nonce
        self._data = data

    @contextmanager
    def _transaction(self) -> Iterator[CredentialSet]:
        """Decrypt, yield the set for one change, then re-seal.

        If the body raises, nothing is re-sealed and the vault keeps its
        previous ciphertext.
        """
        with self._mutex:
            self._ensure_open()
            credentials = self._decrypt()
            yield credentials
            self._encrypt(credentials)
            self._dirty = True

    def _snapshot(self) -> CredentialSet:
        """Decrypt the set for a read-only operation."""
        with self._mutex:
            self._ensure_open()
            return self._decrypt()

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def new(cls, passphrase: str, config: VaultConfig | None = None) -> "Vault":
        """Create a new, empty vault sealed under ``passphrase``.

        The vault exists only in memory until ``save`` is called.
        """
        vault = cls(config=config)
        vault._rekey(passphrase)
        vault._encrypt({})
        vault._dirty = True
        logger.info(
            "Created new vault (argon2id t=%d m=%dKiB p=%d)",
            vault._params.time_cost, vault._params.memory_cost,
            vault._params.parallelism,
        )
        return vault

    @classmethod
    def open(
        cls,
        filename: str,
        passphrase: str,
        config: VaultConfig | None = None,
    ) -> "Vault":
        """Lock, load and decrypt the vault at ``filename``.

        The current layout is tried first, then each legacy layout. On
        success the salt and nonce are rotated in memory. A vault loaded
        from a legacy layout adopts the current layout and is marked dirty,
        so the next ``save`` upgrades the file.

        Raises:
            LockedError: If the vault is locked by another handle.
            VaultIOError: If the file cannot be read.
            AuthenticationFailure: Wrong passphrase or corrupt file.
            MalformedFileError: If no known layout parses.
        """
        if config is None:
            config = VaultConfig.from_env()
        path = os.path.abspath(filename)
        lock = FileLock.acquire(path, suffix=config.lock_suffix)
        try:
            raw = formats.read_vault_file(path)
            loaded = formats.load(raw, passphrase)
            vault = cls(config=config, params=loaded.params)
            vault._rekey(passphrase)
            vault._encrypt(loaded.credentials)
        except Exception:
            try:
                lock.release()
            except VaultIOError as err:
                # the original failure is the one reported to the caller
                logger.error("Could not release lock %s: %s", lock.path, err)
            raise

        vault._lock = lock
        vault._path = path
        vault._provenance = loaded.provenance
        if loaded.is_legacy:
            vault._dirty = True
            logger.info(
                "Opened %s from %s layout; next save migrates it to the current layout",
                path, loaded.provenance,
            )
        else:
            logger.info("Opened vault %s", path)
        logger.debug("Vault %s holds %d credential(s)", path, len(loaded.credentials))
        return vault

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def save(self, filename: str | None = None) -> None:
        """Atomically persist the encrypted vault.

        Args:
            filename: Destination path; defaults to the path the vault was
                opened from.

        Raises:
            ValueError: If no filename is given for a vault never opened.
            VaultIOError: If writing or renaming fails; the previous file
                is left untouched.
        """
        with self._mutex:
            self._ensure_open()
            target = filename or self._path
            if target is None:
                raise ValueError("no filename given for a vault that was not opened from disk")
            payload = formats.dump_current(self._params, self._salt, self._nonce, self._data)
            formats.write_atomic(target, payload)
            self._dirty = False
        logger.info("Saved vault to %s", target)

    def close(self) -> None:
        """Zero the derived key and release the file lock.

        Closing an already closed vault is a no-op.

        Raises:
            VaultIOError: If the lock file cannot be removed.
        """
        with self._mutex:
            if self._closed:
                return
            self._wipe_secret()
            self._closed = True
            lock, self._lock = self._lock, None
        if lock is not None:
            try:
                lock.release()
            except VaultIOError as err:
                logger.error("Could not release lock %s: %s", lock.path, err)
                raise
        logger.debug("Closed vault %s", self._path)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def add(self, location: str, credential: Credential) -> None:
        """Add ``credential`` at ``location``.

        Raises:
            AlreadyExistsError: If location is already present.
        """
        with self._transaction() as credentials:
            if location in credentials:
                raise AlreadyExistsError(
                    f"credential at {location!r} already exists"
                )
            credentials[location] = credential.model_copy(deep=True)
        logger.debug("Vault add: location=%s", location)

    def get(self, location: str) -> Credential:
        """Return the credential at ``location``.

        Raises:
            NotFoundError: If location is absent.
        """
        credentials = self._snapshot()
        try:
            return credentials[location]
        except KeyError:
            raise NotFoundError(f"no credential at {location!r}") from None

    def edit(self, location: str, credential: Credential) -> None:
        """Replace the credential at ``location``, keeping its metadata.

        Raises:
            NotFoundError: If location is absent.
        """
        with self._transaction() as credentials:
            old = credentials.get(location)
            if old is None:
                raise NotFoundError(f"no credential at {location!r}")
            credentials[location] = credential.model_copy(update={"meta": old.meta})
        logger.debug("Vault edit: location=%s", location)

    def delete(self, location: str) -> None:
        """Remove the credential at ``location``.

        Raises:
            NotFoundError: If location is absent.
        """
        with self._transaction() as credentials:
            if credentials.pop(location, None) is None:
                raise NotFoundError(f"no credential at {location!r}")
        logger.debug("Vault delete: location=%s", location)

    def generate(self, location: str, username: str) -> Credential:
        """Add a credential with a random alphanumeric password.

        Returns:
            The credential that was added.

        Raises:
            AlreadyExistsError: If location is already present.
        """
        password = pwgen.generate_passphrase(
            pwgen.CHARSET_ALPHANUM, self._config.generated_password_length,
        )
        credential = Credential(username=username, password=password)
        self.add(location, credential)
        return credential

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def _credential(self, credentials: CredentialSet, location: str) -> Credential:
        try:
            return credentials[location]
        except KeyError:
            raise NotFoundError(f"no credential at {location!r}") from None

    def add_meta(self, location: str, name: str, value: str) -> None:
        """Add metadata ``name`` = ``value`` to the credential at ``location``.

        Raises:
            NotFoundError: If location is absent.
            MetaAlreadyExistsError: If the meta name is already present.
        """
        with self._transaction() as credentials:
            cred = self._credential(credentials, location)
            if cred.meta is not None and name in cred.meta:
                raise MetaAlreadyExistsError(
                    f"meta tag {name!r} already exists at {location!r}"
                )
            if cred.meta is None:
                cred.meta = {}
            cred.meta[name] = value

    def edit_meta(self, location: str, name: str, value: str) -> None:
        """Change the value of an existing meta tag.

        Raises:
            NotFoundError: If location is absent.
            MetaNotFoundError: If the meta name is absent.
        """
        with self._transaction() as credentials:
            cred = self._credential(credentials, location)
            if not cred.meta or name not in cred.meta:
                raise MetaNotFoundError(
                    f"meta tag {name!r} does not exist at {location!r}"
                )
            cred.meta[name] = value

    def delete_meta(self, location: str, name: str) -> None:
        """Remove a meta tag from the credential at ``location``.

        Raises:
            NotFoundError: If location is absent.
            MetaNotFoundError: If the meta name is absent.
        """
        with self._transaction() as credentials:
            cred = self._credential(credentials, location)
            if not cred.meta or name not in cred.meta:
                raise MetaNotFoundError(
                    f"meta tag {name!r} does not exist at {location!r}"
                )
            del cred.meta[name]

    # ------------------------------------------------------------------
    # Enumeration and search
    # ------------------------------------------------------------------

    def locations(self) -> list[str]:
        """Return all locations, sorted."""
        return sorted(self._snapshot())

    def find(self, text: str) -> tuple[str, Credential]:
        """Find a credential by location.

        An exact match wins; otherwise the lexicographically smallest
        location containing ``text`` is returned.

        Raises:
            NotFoundError: If no location matches.
        """
        credentials = self._snapshot()
        if text in credentials:
            return text, credentials[text]
        matches = sorted(location for location in credentials if text in location)
        if not matches:
            raise NotFoundError(f"no credential matching {text!r}")
        return matches[0], credentials[matches[0]]

    def find_meta(self, location: str, text: str) -> tuple[str, str]:
        """Find a meta tag of the credential at ``location`` by name.

        Same policy as :meth:`find`, over meta names.

        Returns:
            Tuple of (meta name, meta value).

        Raises:
            NotFoundError: If location is absent.
            MetaNotFoundError: If no meta name matches.
        """
        cred = self._credential(self._snapshot(), location)
        meta = cred.meta or {}
        if text in meta:
            return text, meta[text]
        matches = sorted(name for name in meta if text in name)
        if not matches:
            raise MetaNotFoundError(
                f"no meta tag matching {text!r} at {location!r}"
            )
        return matches[0], meta[matches[0]]

    # ------------------------------------------------------------------
    # Bulk operations
    # ------------------------------------------------------------------

    def merge(self, other: "Vault") -> None:
        """Copy every credential of ``other`` into this vault.

        Locations are merged in sorted order. Not atomic: on a conflict,
        credentials merged before it stay in this vault.

        Raises:
            MergeConflictError: If a location of ``other`` already exists here.
        """
        merged = 0
        for location in other.locations():
            credential = other.get(location)
            try:
                self.add(location, credential)
            except AlreadyExistsError as err:
                raise MergeConflictError(
                    f"merge conflict: {location!r} already exists in vault"
                ) from err
            merged += 1
        logger.info("Merged %d credential(s) into vault", merged)

    def load_csv(
        self,
        stream: TextIO,
        location_field: str,
        username_field: str,
        password_field: str,
    ) -> int:
        """Import credentials from CSV; see :func:`importer.load_csv`.

        Returns:
            Number of records imported.
        """
        self._ensure_open()
        return load_csv(self, stream, location_field, username_field, password_field)

    def change_passphrase(self, new_passphrase: str) -> None:
        """Re-seal the vault under a key derived from ``new_passphrase``.

        A fresh salt and nonce are drawn; KDF parameters are kept. The file
        on disk is unchanged until ``save``.
        """
        with self._transaction():
            self._rekey(new_passphrase)
        logger.info("Vault passphrase changed")
