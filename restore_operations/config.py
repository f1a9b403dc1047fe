"""
Restore Configuration

Centralized configuration for binary restore operations, providing a single
source of truth for the storage location, the target data directory, the
special-mode mongod startup and the restore policy.

This configuration can be built directly, from a dictionary, or from the
global ``MongoOpsSettings``.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
import logging

from config import MongoOpsSettings
from mongo_ops_exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class RestoreConfig:
    """
    Configuration for binary restore operations.

    Storage Settings:
        storage_root: Root directory holding backup sentinels and files
        read_chunk_size: Bytes read from storage per streaming call

    Data Directory Settings:
        db_path: Target mongod data directory
        lock_file_name: Lock file that must be absent or empty
        owner_uid / owner_gid: Ownership applied after restore (dbPath owner if None)
        file_mode / dir_mode: Permission bits applied after restore

    mongod Settings:
        mongod_binary: Executable used for special-mode startups
        mongod_config_path: Minimal config file for special-mode startups
        mongod_host / mongod_port: Endpoint for special-mode startups
        startup_timeout: Seconds to wait for readiness
        readiness_poll_interval: Seconds between readiness probes
        server_selection_timeout_ms: Driver timeout for admin sessions
        app_name: Application name reported by admin sessions

    Policy Settings:
        compatibility_policy: Version compatibility rule name
        verify_checksums: Verify manifest checksums while copying
        skip_ownership_fix: Leave ownership untouched

    Example:
        ```python
        config = RestoreConfig(
            storage_root="/mnt/backups",
            db_path="/var/lib/mongodb",
            mongod_config_path="/etc/mongod-restore.conf"
        )
        ```
    """

    # Storage Settings
    storage_root: str = "./backups"
    read_chunk_size: int = 1024 * 1024

    # Data Directory Settings
    db_path: str = "/var/lib/mongodb"
    lock_file_name: str = "mongod.lock"
    owner_uid: Optional[int] = None
    owner_gid: Optional[int] = None
    file_mode: int = 0o600
    dir_mode: int = 0o700

    # mongod Settings
    mongod_binary: str = "mongod"
    mongod_config_path: str = "/etc/mongod.conf"
    mongod_host: str = "127.0.0.1"
    mongod_port: Optional[int] = None
    startup_timeout: float = 300.0
    readiness_poll_interval: float = 1.0
    server_selection_timeout_ms: int = 5000
    app_name: str = "mongo_ops restore"

    # Policy Settings
    compatibility_policy: str = "same_major_not_newer"
    verify_checksums: bool = True
    skip_ownership_fix: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        self.validate()

    def validate(self) -> None:
        """
        Validate configuration parameters.

        Raises:
            ConfigurationError: If any configuration parameter is invalid
        """
        from .core.compatibility import get_policy

        if not self.storage_root:
            raise ConfigurationError("storage_root must be set")
        if not self.db_path:
            raise ConfigurationError("db_path must be set")
        if self.read_chunk_size <= 0:
            raise ConfigurationError("read_chunk_size must be positive")
        if self.read_chunk_size > 256 * 1024 * 1024:
            logger.warning(f"Large read chunk size ({self.read_chunk_size} bytes) may cause memory pressure")

        if not self.lock_file_name or "/" in self.lock_file_name:
            raise ConfigurationError("lock_file_name must be a plain file name")

        for name in ("file_mode", "dir_mode"):
            value = getattr(self, name)
            if not 0 <= value <= 0o7777:
                raise ConfigurationError(f"{name} must be a permission mode between 0 and 0o7777")

        if self.mongod_port is not None and not 0 < self.mongod_port < 65536:
            raise ConfigurationError("mongod_port must be between 1 and 65535")
        if self.startup_timeout <= 0:
            raise ConfigurationError("startup_timeout must be positive")
        if self.readiness_poll_interval <= 0:
            raise ConfigurationError("readiness_poll_interval must be positive")
        if self.readiness_poll_interval > self.startup_timeout:
            logger.warning(
                f"readiness_poll_interval ({self.readiness_poll_interval}s) exceeds "
                f"startup_timeout ({self.startup_timeout}s); only one probe will run"
            )
        if self.server_selection_timeout_ms <= 0:
            raise ConfigurationError("server_selection_timeout_ms must be positive")

        try:
            get_policy(self.compatibility_policy)
        except KeyError as e:
            raise ConfigurationError(str(e)) from e

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'RestoreConfig':
        """
        Create configuration from a dictionary.

        Unknown keys are rejected so that typos surface immediately.

        Raises:
            ConfigurationError: If the dictionary holds unknown keys
        """
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(config_dict) - known)
        if unknown:
            raise ConfigurationError(f"Unknown restore configuration keys: {', '.join(unknown)}")
        return cls(**config_dict)

    @classmethod
    def from_settings(cls, settings: MongoOpsSettings) -> 'RestoreConfig':
        """Build a restore configuration from the global settings object."""
        mongod = settings.mongod
        return cls(
            storage_root=settings.storage.root,
            read_chunk_size=settings.storage.read_chunk_size,
            db_path=mongod.db_path,
            lock_file_name=settings.restore.lock_file_name,
            owner_uid=mongod.owner_uid,
            owner_gid=mongod.owner_gid,
            file_mode=mongod.file_mode,
            dir_mode=mongod.dir_mode,
            mongod_binary=mongod.binary,
            mongod_config_path=mongod.config_path,
            mongod_host=mongod.host,
            mongod_port=mongod.port,
            startup_timeout=mongod.startup_timeout,
            readiness_poll_interval=mongod.readiness_poll_interval,
            server_selection_timeout_ms=mongod.server_selection_timeout_ms,
            app_name=mongod.app_name,
            compatibility_policy=str(getattr(settings.restore.compatibility_policy, "value",
                                             settings.restore.compatibility_policy)),
            verify_checksums=settings.restore.verify_checksums,
            skip_ownership_fix=settings.restore.skip_ownership_fix
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary."""
        return asdict(self)

    def __repr__(self) -> str:
        """String representation of configuration."""
        return (
            f"RestoreConfig("
            f"storage_root={self.storage_root}, "
            f"db_path={self.db_path}, "
            f"mongod={self.mongod_binary} --config {self.mongod_config_path}, "
            f"policy={self.compatibility_policy}"
            f")"
        )
