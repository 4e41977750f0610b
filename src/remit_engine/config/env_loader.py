"""Environment variable configuration loading (``REMIT_*``)."""

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .types import FIELD_ORDER

ENV_PREFIX = "REMIT_"


class EnvironmentConfigLoader:
    def load_env_config(self, env_file: str | Path | None = None) -> dict[str, Any]:
        """Collect the ``REMIT_*`` variables that are actually set.

        Values are returned as raw strings; type coercion happens once, when
        the merged configuration is validated.

        Args:
            env_file: Optional ``.env`` file loaded into the environment first.
                Variables already set in the process win over the file.
        """
        if env_file is not None:
            path = Path(env_file)
            if not path.exists():
                raise FileNotFoundError(f"Environment file not found: {path}")
            load_dotenv(path, override=False)

        return {
            field: os.environ[ENV_PREFIX + field.upper()]
            for field in FIELD_ORDER
            if ENV_PREFIX + field.upper() in os.environ
        }
