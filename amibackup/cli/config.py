"""User configuration for the CLI.

Settings come from an optional YAML file, then environment variables, then
command-line options (applied by the commands themselves).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..errors import ConfigurationError
from ..models.run_config import (
    DEFAULT_DEST_REGION,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_SOURCE_REGION,
    DEFAULT_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AMIBACKUP_CONFIG"
LOG_LEVEL_ENV_VAR = "AMIBACKUP_LOG_LEVEL"
DEFAULT_CONFIG_PATH = Path.home() / ".amibackup" / "config.yaml"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Config:
    """Resolved CLI settings.

    Attributes:
        aws_profile: AWS profile name (optional)
        log_level: Root log level
        source_region: Default source region
        dest_region: Default destination region
        timeout: Default global deadline in seconds
        poll_interval: Image state poll interval in seconds
        audit_dir: Purge audit log directory (optional, disabled when None)
    """

    aws_profile: Optional[str] = None
    log_level: str = "INFO"
    source_region: str = DEFAULT_SOURCE_REGION
    dest_region: str = DEFAULT_DEST_REGION
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    audit_dir: Optional[str] = None

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load configuration from file and environment.

        Args:
            path: Config file path (default: $AMIBACKUP_CONFIG or ~/.amibackup/config.yaml)

        Returns:
            Config with file values and environment overrides applied

        Raises:
            ConfigurationError: If the file cannot be parsed or holds invalid values
        """
        config_path = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH).expanduser()
        data: Dict[str, Any] = {}

        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid config file {config_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigurationError(f"Invalid config file {config_path}: expected a mapping")
            logger.debug(f"Loaded config from {config_path}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")

        config = cls(**{k: v for k, v in data.items() if k in known})

        if os.environ.get("AWS_PROFILE"):
            config.aws_profile = os.environ["AWS_PROFILE"]
        if os.environ.get(LOG_LEVEL_ENV_VAR):
            config.log_level = os.environ[LOG_LEVEL_ENV_VAR]

        config.validate()
        return config

    def validate(self) -> None:
        """Check value types and ranges.

        Raises:
            ConfigurationError: If a value is invalid
        """
        self.log_level = str(self.log_level).upper()
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.log_level}")

        for name in ("timeout", "poll_interval"):
            value = getattr(self, name)
            try:
                setattr(self, name, float(value))
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid {name}: {value}") from e
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"Invalid {name}: {value}")
