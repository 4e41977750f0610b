"""Configuration resolution with precedence handling.

Programmatic > Environment > Project file > Home file > Defaults
"""

import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ConfigurationError
from .env_loader import EnvironmentConfigLoader
from .file_loader import FileConfigLoader
from .schema import RemitSettings
from .types import FIELD_ORDER, ConfigOrigin, ResolvedConfig

log = logging.getLogger(__name__)


class ConfigResolver:
    def __init__(self) -> None:
        self.file_loader = FileConfigLoader()
        self.env_loader = EnvironmentConfigLoader()

    def resolve(
        self,
        programmatic: dict[str, Any] | None = None,
        *,
        use_env_file: str | Path | None = None,
        project_root: Path | None = None,
    ) -> ResolvedConfig:
        """Merge every source and validate the result.

        Raises:
            ConfigurationError: If a file is malformed or the merged values
                fail validation.
        """
        merged: dict[str, Any] = {}
        origin: dict[str, ConfigOrigin] = {}

        for name, field in RemitSettings.model_fields.items():
            merged[name] = field.get_default(call_default_factory=True)
            origin[name] = "default"

        layers: list[tuple[ConfigOrigin, dict[str, Any]]] = [
            ("file", self.file_loader.load_home_config()),
            ("file", self.file_loader.load_project_config(project_root)),
        ]
        try:
            layers.append(("env", self.env_loader.load_env_config(use_env_file)))
        except FileNotFoundError as e:
            raise ConfigurationError(str(e)) from e
        layers.append(("programmatic", programmatic or {}))

        for source, values in layers:
            for name, value in values.items():
                if name in merged:
                    merged[name] = value
                    origin[name] = source
                else:
                    log.debug("Ignoring unknown config key %r from %s", name, source)

        try:
            settings = RemitSettings(**merged)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        values = settings.to_dict()
        return ResolvedConfig(
            **{name: values[name] for name in FIELD_ORDER},
            origin=origin,
        )
