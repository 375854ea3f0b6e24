"""Random passphrase generation."""
import secrets
import logging

logger = logging.getLogger("masterkey.pwgen")

CHARSET_ALPHA = "abcdefghijklmnopqrstuvwxyz"
CHARSET_ALPHANUM = CHARSET_ALPHA + "0123456789"
CHARSET_ALPHANUM_SPECIAL = CHARSET_ALPHANUM + "{}_*()&^%$@!\\<>;'|[]=+-`~,.?"


def generate_passphrase(charset: str, length: int) -> str:
    """Generate a random passphrase of ``length`` characters from ``charset``.

    Each character is drawn independently with ``secrets.choice``.

    Raises:
        ValueError: If length is not positive or charset is empty.
    """
    if length <= 0:
        raise ValueError("length argument must be greater than zero")
    if not charset:
        raise ValueError("charset must not be empty")
    if len(set(charset)) == 1:
        logger.warning("Generating a passphrase from a single-character charset")
    return "".join(secrets.choice(charset) for _ in range(length))
