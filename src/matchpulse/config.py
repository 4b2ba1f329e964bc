"""Process-level settings for matchpulse."""

from pathlib import Path

from platformdirs import user_data_dir
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MatchpulseConfig(BaseSettings):
    """Configuration settings for matchpulse."""

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Root log level for the CLI and service",
        alias="MATCHPULSE_LOG_LEVEL",
    )

    # Analytics model configuration
    config_file: Path | None = Field(
        default=None,
        description="Path to the analytics YAML configuration",
        alias="MATCHPULSE_CONFIG_FILE",
    )

    # Storage
    data_dir: Path = Field(
        default_factory=lambda: Path(user_data_dir("matchpulse")),
        description="Directory for persisted snapshots",
        alias="MATCHPULSE_DATA_DIR",
    )

    snapshot_db: Path | None = Field(
        default=None,
        description="Explicit sqlite file for match snapshots",
        alias="MATCHPULSE_SNAPSHOT_DB",
    )

    # Simulation
    seed: int | None = Field(
        default=None,
        description="Seed for reproducible Monte Carlo runs",
        alias="MATCHPULSE_SEED",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    def snapshot_path(self, file_name: str = "matchpulse_snapshots.sqlite3") -> Path:
        """Resolve the snapshot database location."""
        if self.snapshot_db is not None:
            return self.snapshot_db
        return self.data_dir / file_name


# Global configuration instance
config = MatchpulseConfig()


def get_config() -> MatchpulseConfig:
    """Get the current configuration."""
    return config


def update_config(**kwargs) -> None:
    """Update configuration settings."""
    global config
    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            raise ValueError(f"Unknown configuration option: {key}")


def reset_config() -> None:
    """Reset configuration to defaults."""
    global config
    config = MatchpulseConfig()
