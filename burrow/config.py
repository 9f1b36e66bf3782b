# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
import os
import re
from pathlib import Path
from typing import Any

import yaml

from burrow.core.types import Settings


DEFAULT_SETTINGS_FILE = "settings.burrow.yaml"

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _expand_env(value: Any) -> Any:
    """Replace ``${NAME}`` references in string values with env values.

    Unset variables expand to an empty string so that validation reports
    them as missing.
    """
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    return value


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from a YAML file.

    Resolution order:
    1. Explicit config_path parameter (if provided)
    2. BURROW_SETTINGS environment variable (if set)
    3. Default: 'settings.burrow.yaml' in the current directory

    Secrets can stay out of the file as ``${ENV_VAR}`` references.

    Args:
        config_path: Optional explicit path to the configuration file.

    Returns:
        Settings object populated from the YAML configuration.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        yaml.YAMLError: If the YAML file is malformed.
        pydantic.ValidationError: If the configuration fails validation.
    """
    if config_path is None:
        env_path = os.environ.get("BURROW_SETTINGS")
        config_path = Path(env_path) if env_path else Path(DEFAULT_SETTINGS_FILE)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found at {config_path}")

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    return Settings(**_expand_env(data))
