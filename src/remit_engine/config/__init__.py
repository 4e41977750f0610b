"""Configuration for the remit engine.

Resolve once, freeze, then pass the ``FrozenConfig`` to the components:

    config = resolve_config({"poll_interval": 2.0}).to_frozen()
    orchestrator = PaymentConfirmationOrchestrator(api, settings=config)

``config_scope`` installs an ambient ``ResolvedConfig`` for the duration of a
block; ``resolve_config`` calls inside it return that config (plus any
programmatic overrides) instead of reading the environment again.
"""

from collections.abc import Generator
from contextlib import contextmanager
import contextvars
from pathlib import Path
from typing import Any

from .file_loader import ConfigFileError, FileConfigLoader
from .resolver import ConfigResolver
from .schema import DEFAULT_BASE_URL, RemitSettings
from .types import ConfigOrigin, FrozenConfig, ResolvedConfig, SourceMap

_resolver = ConfigResolver()

_ambient_resolved_config: contextvars.ContextVar[ResolvedConfig] = (
    contextvars.ContextVar("remit_engine_resolved_config")
)


def resolve_config(
    programmatic: dict[str, Any] | None = None,
    *,
    use_env_file: str | Path | None = None,
    project_root: Path | None = None,
) -> ResolvedConfig:
    """Resolve configuration from all sources with proper precedence.

    Args:
        programmatic: Highest-precedence overrides; unknown keys are ignored.
        use_env_file: Optional ``.env`` file to load before reading ``REMIT_*``.
        project_root: Where to start looking for pyproject.toml.

    Raises:
        ConfigurationError: On malformed files or invalid values.
    """
    try:
        ambient = _ambient_resolved_config.get()
    except LookupError:
        return _resolver.resolve(
            programmatic=programmatic,
            use_env_file=use_env_file,
            project_root=project_root,
        )
    return ambient.with_overrides(**programmatic) if programmatic else ambient


@contextmanager
def config_scope(config: ResolvedConfig) -> Generator[None]:
    """Make ``config`` the result of ``resolve_config`` within the block."""
    token = _ambient_resolved_config.set(config)
    try:
        yield
    finally:
        _ambient_resolved_config.reset(token)


__all__ = [  # noqa: RUF022
    "resolve_config",
    "config_scope",
    "ResolvedConfig",
    "FrozenConfig",
    "SourceMap",
    "ConfigOrigin",
    "RemitSettings",
    "DEFAULT_BASE_URL",
    "ConfigResolver",
    "FileConfigLoader",
    "ConfigFileError",
]
