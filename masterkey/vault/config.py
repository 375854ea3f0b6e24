"""
Vault Configuration — KDF parameters and validated settings.

Reads optional overrides from environment variables:
    MASTERKEY_ARGON_TIME = <Argon2id time cost (passes)>
    MASTERKEY_ARGON_MEMORY = <Argon2id memory cost in KiB>
    MASTERKEY_ARGON_LANES = <Argon2id parallelism, 1..255>
    MASTERKEY_SALT_SIZE = <salt length in bytes, 16..24>
    MASTERKEY_GENPASS_LENGTH = <length of generated passwords>

Security Note:
    KDF parameters are written alongside every vault so that a file stays
    readable after the defaults change. Lowering them only affects vaults
    created or re-keyed afterwards.
"""
import os
import logging

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger("masterkey.vault")

DEFAULT_ARGON_TIME = 3
DEFAULT_ARGON_MEMORY = 256 * 1024  # KiB
SALT_SIZE = 24


def _default_lanes() -> int:
    return max(1, min(os.cpu_count() or 1, 255))


class KDFParams(BaseModel):
    """Argon2id cost parameters stored with each vault."""

    time_cost: int = Field(default=DEFAULT_ARGON_TIME, ge=1, le=0xFFFFFFFF)
    memory_cost: int = Field(default=DEFAULT_ARGON_MEMORY, ge=8, le=0xFFFFFFFF)
    parallelism: int = Field(default_factory=_default_lanes, ge=1, le=255)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_memory_per_lane(self) -> "KDFParams":
        """Argon2 requires at least 8 KiB of memory per lane."""
        if self.memory_cost < 8 * self.parallelism:
            raise ValueError(
                f"memory_cost {self.memory_cost} KiB is below the minimum "
                f"of 8 KiB per lane ({8 * self.parallelism} KiB)"
            )
        return self


def _env_int(name: str) -> int | None:
    """Read an integer environment variable, or None if unset."""
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as err:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from err


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    kdf: KDFParams = Field(default_factory=KDFParams)
    salt_size: int = Field(default=SALT_SIZE, ge=16, le=24)
    generated_password_length: int = Field(default=32, ge=1)
    lock_suffix: str = Field(default=".lck", min_length=1)

    model_config = {"frozen": True}

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig from environment overrides.

        Returns:
            Populated VaultConfig instance; unset variables keep defaults.

        Raises:
            ValueError: If a variable is not an integer or out of range.
        """
        kdf_values = {
            field: value
            for field, value in (
                ("time_cost", _env_int("MASTERKEY_ARGON_TIME")),
                ("memory_cost", _env_int("MASTERKEY_ARGON_MEMORY")),
                ("parallelism", _env_int("MASTERKEY_ARGON_LANES")),
            )
            if value is not None
        }
        values: dict = {"kdf": KDFParams(**kdf_values)}
        salt_size = _env_int("MASTERKEY_SALT_SIZE")
        if salt_size is not None:
            values["salt_size"] = salt_size
        genpass_length = _env_int("MASTERKEY_GENPASS_LENGTH")
        if genpass_length is not None:
            values["generated_password_length"] = genpass_length
        config = cls(**values)
        logger.debug(
            "Vault config: argon2id t=%d m=%dKiB p=%d salt=%dB",
            config.kdf.time_cost, config.kdf.memory_cost,
            config.kdf.parallelism, config.salt_size,
        )
        return config
