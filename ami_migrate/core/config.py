"""Configuration management for AMI Migrate."""

import json
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ami_migrate.core.exceptions import ConfigurationError


DEFAULT_DEVICE_NAME = "/dev/xvdf"
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_WAIT = 300.0

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class Config(BaseModel):
    """Configuration model for AMI Migrate."""

    default_region: str = Field(default="us-east-1", description="Default AWS region")
    profile: Optional[str] = Field(default=None, description="AWS named profile")
    poll_interval: float = Field(
        default=DEFAULT_POLL_INTERVAL, gt=0, description="Seconds between waiter polls"
    )
    max_wait: float = Field(
        default=DEFAULT_MAX_WAIT, ge=0, description="Upper bound in seconds for every wait"
    )
    log_level: str = Field(default="WARNING", description="Root log level")
    default_device: str = Field(
        default=DEFAULT_DEVICE_NAME,
        description="Device used when a snapshot carries no ami-migrate-device tag",
    )

    @field_validator('default_region')
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate AWS region format."""
        region_pattern = r'^[a-z]{2,3}(-gov)?-[a-z]+-\d+$'
        if not re.match(region_pattern, v):
            raise ValueError(
                f"Invalid AWS region format: {v}. "
                "Expected format: us-east-1, eu-west-1, ap-southeast-3, etc."
            )
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Expected one of {', '.join(LOG_LEVELS)}")
        return level

    @field_validator('default_device')
    @classmethod
    def validate_device(cls, v: str) -> str:
        if not v.startswith('/dev/'):
            raise ValueError(f"Invalid device name: {v}. Expected a path under /dev/")
        return v


class ConfigManager:
    """Manages the local configuration file for AMI Migrate."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_dir: Optional custom configuration directory path.
                       Defaults to ~/.ami-migrate/
        """
        if config_dir is None:
            config_dir = Path.home() / ".ami-migrate"

        self.config_dir = config_dir
        self.config_file = config_dir / "config.json"

    def load_config(self) -> Config:
        """Load configuration from file.

        Returns:
            Config loaded from disk, or the defaults when no file exists.

        Raises:
            ConfigurationError: If the configuration file is corrupted or invalid.
        """
        if not self.config_file.exists():
            return Config()

        try:
            with open(self.config_file, 'r') as f:
                config_data = json.load(f)
            return Config(**config_data)
        except (json.JSONDecodeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration file {self.config_file}: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def save_config(self, config: Config) -> None:
        """Save configuration to file.

        Args:
            config: Configuration object to save.

        Raises:
            ConfigurationError: If unable to write configuration file.
        """
        temp_file = self.config_file.with_suffix('.tmp')
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)

            # Write atomically by writing to temp file first
            with open(temp_file, 'w') as f:
                json.dump(config.model_dump(), f, indent=2)

            temp_file.replace(self.config_file)

        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise ConfigurationError(f"Failed to save configuration: {e}")

    def config_exists(self) -> bool:
        """Check if configuration file exists."""
        return self.config_file.exists()

    def get_config_path(self) -> Path:
        """Get the configuration file path."""
        return self.config_file
