"""
Vault CSV Import — Bulk-load credentials exported by other password managers.

The first non-empty row is the header. Three configured columns map to
location, username and password; every other column becomes a metadata
entry named after its header. Records whose location already exists are
logged and skipped, so a partially overlapping export can still be
imported. Any other error aborts the import; records added before the
failure stay in the vault.

Security Note:
    Never log usernames or passwords. Only log locations and counts.
"""
import csv
import logging
from typing import TYPE_CHECKING, TextIO

from .exceptions import AlreadyExistsError, MalformedFileError
from .models import Credential

if TYPE_CHECKING:
    from .vault import Vault

logger = logging.getLogger("masterkey.vault")


def _column_index(header: list[str], field: str) -> int:
    try:
        return header.index(field)
    except ValueError as err:
        raise MalformedFileError(f"CSV header has no {field!r} column") from err


def load_csv(
    vault: "Vault",
    stream: TextIO,
    location_field: str,
    username_field: str,
    password_field: str,
) -> int:
    """Import every CSV record from ``stream`` into ``vault``.

    Args:
        vault: Open vault exposing ``add(location, credential)``.
        stream: Text stream of CSV data.
        location_field: Header of the column used as location.
        username_field: Header of the column used as username.
        password_field: Header of the column used as password.

    Returns:
        Number of records imported.

    Raises:
        MalformedFileError: If a configured column is missing or a record is
            shorter than the header.
    """
    reader = csv.reader(stream)
    header: list[str] | None = None
    location_idx = username_idx = password_idx = 0
    stats = {"total": 0, "imported": 0, "skipped": 0}

    for record in reader:
        if not record:
            continue
        if header is None:
            header = record
            location_idx = _column_index(header, location_field)
            username_idx = _column_index(header, username_field)
            password_idx = _column_index(header, password_field)
            continue

        stats["total"] += 1
        if len(record) < len(header):
            raise MalformedFileError(
                f"CSV record on line {reader.line_num} has {len(record)} "
                f"field(s), expected {len(header)}"
            )

        fixed = (location_idx, username_idx, password_idx)
        meta = {
            name: value
            for idx, (name, value) in enumerate(zip(header, record))
            if idx not in fixed
        }
        location = record[location_idx]
        credential = Credential(
            username=record[username_idx],
            password=record[password_idx],
            meta=meta or None,
        )

        try:
            vault.add(location, credential)
        except AlreadyExistsError as err:
            logger.warning("Error importing %s: %s. Skipping.", location, err)
            stats["skipped"] += 1
            continue
        stats["imported"] += 1

    logger.info("CSV import complete: %s", stats)
    return stats["imported"]
