"""Resolved and frozen configuration types.

Configuration is resolved once (``ResolvedConfig``, which remembers where each
value came from) and then frozen (``FrozenConfig``) before it is handed to
the engine components.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, NamedTuple

ConfigOrigin = Literal["programmatic", "env", "file", "default"]
SourceMap = Mapping[str, ConfigOrigin]

FIELD_ORDER = (
    "base_url",
    "request_timeout",
    "state_path",
    "poll_interval",
    "confirmation_timeout",
    "max_consecutive_failures",
    "trigger_store_limit",
)


class ResolvedConfig(NamedTuple):
    """Merged configuration plus the origin of every field."""

    base_url: str
    request_timeout: float
    state_path: Path
    poll_interval: float
    confirmation_timeout: float
    max_consecutive_failures: int
    trigger_store_limit: int

    origin: SourceMap

    def to_frozen(self) -> "FrozenConfig":
        values = self._asdict()
        values.pop("origin")
        return FrozenConfig(**values)

    def with_overrides(self, **overrides: object) -> "ResolvedConfig":
        """Return a copy with known fields overridden and marked programmatic."""
        new_values = self._asdict()
        new_origin = dict(self.origin)
        for field, value in overrides.items():
            if field in FIELD_ORDER:
                new_values[field] = value
                new_origin[field] = "programmatic"
        new_values["origin"] = new_origin
        return ResolvedConfig(**new_values)

    def audit(self) -> str:
        """One ``field: origin:value`` line per field, in a stable order."""
        lines = []
        for field in FIELD_ORDER:
            origin = self.origin.get(field, "default")
            value = getattr(self, field)
            if origin == "env":
                lines.append(f"{field}: env:REMIT_{field.upper()}={value}")
            else:
                lines.append(f"{field}: {origin}:{value}")
        return "\n".join(lines)


@dataclass(frozen=True)
class FrozenConfig:
    """Immutable configuration consumed by the engine."""

    base_url: str
    request_timeout: float
    state_path: Path
    poll_interval: float
    confirmation_timeout: float
    max_consecutive_failures: int
    trigger_store_limit: int
