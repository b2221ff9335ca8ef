"""Configuration models for repokit.

Settings are pydantic-settings models so every option can come from
keyword arguments or from ``REPOKIT_*`` environment variables:

- ``Settings``: shared base with the package-wide model configuration
- ``DataSettings``: data provider, logging and token options
"""

import string

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE62_ALPHABET = string.digits + string.ascii_letters

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        arbitrary_types_allowed=True,
        validate_default=True,
        protected_namespaces=("model_", "settings_"),
    )


class DataSettings(Settings):
    """Options shared by every data provider."""

    model_config = SettingsConfigDict(env_prefix="REPOKIT_")

    provider_name: str = Field(
        default="default",
        description="Name the provider is registered under",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Minimum log level")
    log_serialize: bool = Field(
        default=False,
        description="Emit log records as JSON",
    )
    log_format: dict[str, str] = {
        "time": "<b><e>[</e> <w>{time:YYYY-MM-DD HH:mm:ss.SSS}</w> <e>]</e></b>",
        "level": " <level>{level:>8}</level>",
        "sep": " <b><w>in</w></b> ",
        "name": "<b>{extra[mod_name]:>20}</b>",
        "message": "  <level>{message}</level>",
    }
    slow_operation_ms: float = Field(
        default=500.0,
        ge=0,
        description="Operations slower than this are logged as warnings",
    )

    # Concurrency tokens
    token_alphabet: str = Field(
        default=BASE62_ALPHABET,
        description="Characters used to encode generated change tokens",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            msg = f"log_level must be one of {', '.join(LOG_LEVELS)}"
            raise ValueError(msg)
        return level

    @field_validator("token_alphabet")
    @classmethod
    def validate_token_alphabet(cls, v: str) -> str:
        if len(set(v)) != len(v):
            msg = "token_alphabet must not contain duplicate characters"
            raise ValueError(msg)
        if len(v) < 16:
            msg = "token_alphabet must contain at least 16 characters"
            raise ValueError(msg)
        return v

    @property
    def log_format_string(self) -> str:
        return "".join(self.log_format.values())
