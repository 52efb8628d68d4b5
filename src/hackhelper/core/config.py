"""hack-helper configuration, read from hackhelper.toml, env vars, and .env."""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import dotenv_values
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger("hackhelper.config")


class HackHelperSettings(BaseSettings):
    """CLI client settings."""

    # Runtime connection
    api_url: str = Field(
        default="http://localhost:4441",
        validation_alias=AliasChoices("API_URL", "HACKHELPER_API_URL"),
    )
    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("API_KEY", "HACKHELPER_API_KEY"),
    )
    workflow_id: str = "projectGenerationWorkflow"
    request_timeout: float = 60.0

    # Output
    output_dir: str = "./output"
    scaffold_root: Optional[str] = None

    # Monitoring
    poll_interval: float = 1.5
    max_retries: int = 3
    stream_connect_timeout: float = 10.0
    file_check_interval: float = 5.0
    stop_on_completion: bool = True
    min_request_interval: float = 0.25

    log_level: str = "warning"

    model_config = {
        "env_prefix": "HACKHELPER_",
        "env_file": ".env",
        "extra": "ignore",
        "populate_by_name": True,
    }


def _load_toml_config() -> Dict[str, Any]:
    """Load configuration from hackhelper.toml files.

    Searches for hackhelper.toml in:
    1. HACKHELPER_HOME (~/.hackhelper/hackhelper.toml by default)
    2. Current directory (./hackhelper.toml)

    Returns:
        Combined configuration dict, local file taking precedence
    """
    config: Dict[str, Any] = {}

    home = Path(os.environ.get("HACKHELPER_HOME", "~/.hackhelper")).expanduser()
    for path in (home / "hackhelper.toml", Path("hackhelper.toml")):
        if not path.exists():
            continue
        try:
            with path.open("rb") as f:
                config.update(tomllib.load(f))
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning(f"Ignoring unreadable config file {path}: {e}")

    return config


def _env_names(name: str, field) -> list[str]:
    names = [f"HACKHELPER_{name.upper()}"]
    alias = field.validation_alias
    if isinstance(alias, AliasChoices):
        names.extend(str(choice) for choice in alias.choices)
    return names


def _explicit_env_names() -> set[str]:
    """Upper-cased names set in the environment or in the settings' .env file."""
    names = {key.upper() for key in os.environ}
    env_file = HackHelperSettings.model_config.get("env_file")
    if env_file and Path(env_file).is_file():
        names.update(key.upper() for key, value in dotenv_values(env_file).items() if value is not None)
    return names


def get_settings() -> HackHelperSettings:
    """Build settings: env vars and .env first, hackhelper.toml fills the gaps."""
    settings = HackHelperSettings()

    toml_config = _load_toml_config()
    if not toml_config:
        return settings

    explicit = _explicit_env_names()
    overrides = {}
    for name, field in HackHelperSettings.model_fields.items():
        if name not in toml_config:
            continue
        if any(env.upper() in explicit for env in _env_names(name, field)):
            continue
        overrides[name] = toml_config[name]

    if not overrides:
        return settings
    return HackHelperSettings(**{**settings.model_dump(), **overrides})
