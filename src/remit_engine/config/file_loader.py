"""TOML configuration files.

Two locations are read: ``[tool.remit_engine]`` in the nearest
``pyproject.toml`` and a home file (``~/.config/remit_engine.toml``, or the
path in ``REMIT_CONFIG_HOME``).
"""

import os
from pathlib import Path
import tomllib
from typing import Any

from ..exceptions import ConfigurationError


class ConfigFileError(ConfigurationError):
    """Raised when a configuration file exists but cannot be used."""

    def __init__(self, file_path: Path, message: str) -> None:
        self.file_path = file_path
        super().__init__(f"Config file error in {file_path}: {message}")


class FileConfigLoader:
    def load_project_config(self, project_root: Path | None = None) -> dict[str, Any]:
        """Load ``[tool.remit_engine]`` from the nearest pyproject.toml.

        Returns:
            The section as a dict, empty if there is no file or no section.

        Raises:
            ConfigFileError: If the file cannot be parsed.
        """
        pyproject_path = self._find_pyproject_toml(project_root)
        if pyproject_path is None:
            return {}
        data = self._load_toml(pyproject_path)
        section = data.get("tool", {}).get("remit_engine", {})
        if not isinstance(section, dict):
            raise ConfigFileError(pyproject_path, "[tool.remit_engine] must be a table")
        return dict(section)

    def load_home_config(self) -> dict[str, Any]:
        path = self.home_config_path()
        if not path.exists():
            return {}
        return self._load_toml(path)

    def home_config_path(self) -> Path:
        override = os.getenv("REMIT_CONFIG_HOME")
        if override:
            return Path(override)
        return Path.home() / ".config" / "remit_engine.toml"

    def _load_toml(self, path: Path) -> dict[str, Any]:
        try:
            with path.open(mode="rb") as f:
                return tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigFileError(path, f"Failed to parse TOML: {e}") from e

    def _find_pyproject_toml(self, start_dir: Path | None = None) -> Path | None:
        current = Path(start_dir or Path.cwd()).resolve()
        while True:
            candidate = current / "pyproject.toml"
            if candidate.exists():
                return candidate
            if current == current.parent:
                return None
            current = current.parent
