"""Configuration schema and validation using Pydantic.

Validates and coerces values from every source (environment, files,
programmatic) into the right types and applies defaults.
"""

from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BASE_URL = "https://remit-backend-yblg.onrender.com"


def default_state_path() -> Path:
    return Path.home() / ".local" / "state" / "remit_engine" / "state.json"


class RemitSettings(BaseSettings):
    """Pydantic settings schema, read from ``REMIT_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="REMIT_",
        env_file=None,
        case_sensitive=False,
        extra="ignore",
    )

    base_url: str = Field(
        default=DEFAULT_BASE_URL,
        description="Root URL of the remit backend",
        min_length=1,
    )

    request_timeout: float = Field(
        default=30.0,
        description="Per-request HTTP timeout in seconds",
        gt=0,
    )

    state_path: Path = Field(
        default_factory=default_state_path,
        description="JSON file holding the dedup set, records and credential",
    )

    poll_interval: float = Field(
        default=3.0,
        description="Seconds between funding-intent status polls",
        ge=0,
    )

    confirmation_timeout: float = Field(
        default=90.0,
        description="Seconds to wait for a funding confirmation",
        gt=0,
    )

    max_consecutive_failures: int = Field(
        default=5,
        description="Failed poll cycles in a row before giving up",
        ge=1,
    )

    trigger_store_limit: int = Field(
        default=100,
        description="Maximum remembered triggered-payment IDs",
        ge=1,
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")

    @model_validator(mode="after")
    def check_poll_fits_timeout(self) -> "RemitSettings":
        if self.poll_interval >= self.confirmation_timeout:
            raise ValueError(
                "poll_interval must be shorter than confirmation_timeout "
                f"({self.poll_interval} >= {self.confirmation_timeout})"
            )
        return self

    def to_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in type(self).model_fields}
