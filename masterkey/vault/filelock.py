"""
Vault File Lock — Advisory single-writer lock keyed by vault path.

A lock is the presence of ``<vault path>.lck`` next to the vault. It is
created with ``O_CREAT | O_EXCL`` so that two processes racing for the
same vault cannot both succeed. Acquisition never waits.

The lock is cooperative: a process that ignores lock files can still read
and write the vault. A crash while a vault is open leaves a stale lock file
behind, which must be removed by hand.
"""
import os
import logging

from .exceptions import LockedError, VaultIOError

logger = logging.getLogger("masterkey.vault")

LOCK_SUFFIX = ".lck"


class FileLock:
    """Handle to an acquired on-disk lock file."""

    def __init__(self, path: str):
        self._path = path
        self._held = True

    @property
    def path(self) -> str:
        """Absolute path of the lock file."""
        return self._path

    @property
    def held(self) -> bool:
        return self._held

    @classmethod
    def acquire(cls, filename: str, suffix: str = LOCK_SUFFIX) -> "FileLock":
        """Acquire the lock for the vault at ``filename``.

        Args:
            filename: Path of the vault file (need not exist yet).
            suffix: Suffix appended to the vault path to name the lock file.

        Returns:
            Held FileLock.

        Raises:
            LockedError: If the lock file already exists.
            VaultIOError: If the lock file cannot be created.
        """
        lock_path = os.path.abspath(filename + suffix)
        try:
            fd = os.open(lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError as err:
            raise LockedError(f"vault is locked: {lock_path}") from err
        except OSError as err:
            raise VaultIOError(err.errno, f"cannot create lock file: {err.strerror}", lock_path) from err
        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
        finally:
            os.close(fd)
        logger.debug("Acquired vault lock %s", lock_path)
        return cls(lock_path)

    def release(self) -> None:
        """Remove the lock file. Releasing twice is a no-op.

        Raises:
            VaultIOError: If the lock file cannot be removed.
        """
        if not self._held:
            return
        try:
            os.remove(self._path)
        except OSError as err:
            raise VaultIOError(err.errno, f"cannot remove lock file: {err.strerror}", self._path) from err
        self._held = False
        logger.debug("Released vault lock %s", self._path)

    def __repr__(self) -> str:
        return f"<FileLock path={self._path!r} held={self._held}>"
