"""Credential records stored inside a vault."""
from pydantic import BaseModel, Field


class Credential(BaseModel):
    """A username/password pair plus optional metadata.

    ``meta`` stays ``None`` until the first metadata write.
    """

    username: str
    password: str
    meta: dict[str, str] | None = Field(default=None)

    def __repr__(self) -> str:
        # never leak the password through logs or tracebacks
        meta = sorted(self.meta) if self.meta else []
        return f"<Credential username={self.username!r} meta={meta}>"

    __str__ = __repr__


# Plaintext mapping of location -> Credential. Only ever exists for the
# duration of a single vault operation.
CredentialSet = dict[str, Credential]
