"""
Pydantic Settings for Mongo Operations

This module provides strongly-typed configuration settings using Pydantic,
with support for environment variables and YAML configuration files.
"""

from typing import Optional, Union
from enum import Enum
from pathlib import Path
import logging
import os

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_yaml import to_yaml_str, to_yaml_file

from mongo_ops_exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class CompatibilityPolicyName(str, Enum):
    """
    Version compatibility policies for restoring a backup into a mongod build.

    - SAME_MAJOR_NOT_NEWER: majors must match and the backup's major.minor must not be newer
    - SAME_MAJOR_MINOR: major and minor must both match
    - EXACT: major, minor and patch must all match
    """
    SAME_MAJOR_NOT_NEWER = "same_major_not_newer"  # Default; allows restoring older minors into newer builds
    SAME_MAJOR_MINOR = "same_major_minor"  # Strict; feature compatibility version lines up exactly
    EXACT = "exact"  # Strictest; identical release only


class StorageSettings(BaseSettings):
    """
    Settings for the backup storage the restore reads from.

    - Root location of the backup artifacts
    - Chunk size used when streaming files out of storage
    """
    root: str = Field("./backups",
                      description="Root directory (or mount point) holding backup sentinels and files")
    read_chunk_size: int = Field(1024 * 1024, gt=0,
                                 description="Bytes read from storage per streaming call")

    model_config = SettingsConfigDict(env_prefix="MONGO_OPS_STORAGE_", case_sensitive=False)


class MongodSettings(BaseSettings):
    """
    Settings for the mongod processes started during a restore.

    These settings control where the data directory lives, which binary and
    minimal configuration file are used for the special startup modes, and
    how long to wait for the process to become ready.
    """
    binary: str = Field("mongod",
                        description="mongod executable (name on PATH or absolute path)")
    config_path: str = Field("/etc/mongod.conf",
                             description="Minimal mongod config used for special-mode startups")
    db_path: str = Field("/var/lib/mongodb",
                         description="Target data directory to restore into")
    host: str = Field("127.0.0.1",
                      description="Address special-mode mongod binds to")
    port: Optional[int] = Field(None, gt=0, lt=65536,
                                description="Port for special-mode mongod (a free port is picked if unset)")
    startup_timeout: float = Field(300.0, gt=0,
                                   description="Seconds to wait for a started mongod to answer ping")
    readiness_poll_interval: float = Field(1.0, gt=0,
                                           description="Seconds between readiness probes")
    server_selection_timeout_ms: int = Field(5000, gt=0,
                                             description="Driver server selection timeout for admin sessions")
    app_name: str = Field("mongo_ops restore",
                          description="Application name reported to mongod by admin sessions")
    owner_uid: Optional[int] = Field(None, ge=0,
                                     description="Owner uid for restored files (dbPath owner if unset)")
    owner_gid: Optional[int] = Field(None, ge=0,
                                     description="Owner gid for restored files (dbPath group if unset)")
    file_mode: int = Field(0o600, ge=0, le=0o7777,
                           description="Permission bits applied to restored files")
    dir_mode: int = Field(0o700, ge=0, le=0o7777,
                          description="Permission bits applied to restored directories")

    model_config = SettingsConfigDict(env_prefix="MONGO_OPS_MONGOD_", case_sensitive=False)


class RestoreSettings(BaseSettings):
    """
    Settings for the restore pipeline itself.
    """
    compatibility_policy: CompatibilityPolicyName = Field(
        CompatibilityPolicyName.SAME_MAJOR_NOT_NEWER,
        description="Rule deciding which backup versions a mongod build may restore")
    verify_checksums: bool = Field(True,
                                   description="Verify file checksums recorded in the manifest")
    lock_file_name: str = Field("mongod.lock",
                                description="Lock file inside dbPath that must be absent or empty")
    skip_ownership_fix: bool = Field(False,
                                     description="Leave ownership and permissions untouched")

    model_config = SettingsConfigDict(env_prefix="MONGO_OPS_RESTORE_", case_sensitive=False,
                                      use_enum_values=True)


class LoggingSettings(BaseSettings):
    """
    Logging settings for restore runs.
    """
    log_level: str = Field("INFO",
                           description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
    log_format: str = Field("%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                            description="Format string passed to logging.basicConfig")

    model_config = SettingsConfigDict(env_prefix="MONGO_OPS_LOGGING_", case_sensitive=False)


class MongoOpsSettings(BaseSettings):
    """
    Main settings class that consolidates all configuration categories.

    Usage:
        # Load from environment variables and defaults
        settings = MongoOpsSettings()

        # Load from YAML file
        settings = MongoOpsSettings.from_yaml('config.yaml')

        # Access nested settings
        db_path = settings.mongod.db_path
        policy = settings.restore.compatibility_policy
    """
    storage: StorageSettings = Field(default_factory=StorageSettings,
                                     description="Backup storage settings")
    mongod: MongodSettings = Field(default_factory=MongodSettings,
                                   description="Special-mode mongod settings")
    restore: RestoreSettings = Field(default_factory=RestoreSettings,
                                     description="Restore pipeline settings")
    logging: LoggingSettings = Field(default_factory=LoggingSettings,
                                     description="Logging settings")

    model_config = SettingsConfigDict(env_prefix="MONGO_OPS_", case_sensitive=False,
                                      env_nested_delimiter="__")

    @classmethod
    def from_yaml(cls, yaml_file: Union[str, Path]) -> "MongoOpsSettings":
        """
        Load settings from YAML file

        Raises:
            ConfigurationError: If the file is not valid YAML or fails validation
        """
        try:
            with open(yaml_file, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read settings file {yaml_file}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {yaml_file} must contain a mapping")

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings in {yaml_file}: {e}") from e

    def to_yaml(self, yaml_file: Optional[Union[str, Path]] = None) -> str:
        """Serialize settings to YAML, optionally writing them to ``yaml_file``."""
        if yaml_file is not None:
            to_yaml_file(yaml_file, self)
        return to_yaml_str(self)


def load_settings(config_path: Optional[str] = None) -> MongoOpsSettings:
    """
    Load settings from file and/or environment variables.

    - If config_path is provided and exists, loads settings from the YAML file
    - Otherwise, creates a new settings instance with values from environment variables

    Args:
        config_path: Path to YAML configuration file. If None or file doesn't exist,
                    falls back to environment variables and default values.

    Returns:
        MongoOpsSettings object with loaded configuration

    Example:
        # Load from specific config file
        settings = load_settings("/etc/mongo_ops/restore.yaml")

        # Load from environment variables and defaults
        settings = load_settings()
    """
    if config_path and os.path.exists(config_path):
        return MongoOpsSettings.from_yaml(config_path)
    if config_path:
        logger.warning(f"Settings file {config_path} not found, using environment and defaults")
    try:
        return MongoOpsSettings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings in environment: {e}") from e
