"""
Binary Restore Module

Restores a mongod data directory from a binary backup and brings it to a
state a mongod of the requesting version can serve immediately.

Features:
- Backup sentinel and file manifest loading with layout validation
- Pluggable version compatibility policies
- Lock file check and destructive, idempotent data directory preparation
- Streaming file transfer with gzip/zstd decompression, size and checksum checks
- Replication metadata fix-up in a session-cache-refresh-disabled mongod
- Oplog recovery in a standalone-recovery mongod
- Ownership and permission fix-up
- Cooperative cancellation and per-stage error reporting

Typical usage:

    from restore_operations import RestoreConfig, RestoreManager, RestoreParams

    config = RestoreConfig(
        storage_root="/mnt/backups",
        db_path="/var/lib/mongodb",
        mongod_config_path="/etc/mongod-restore.conf"
    )
    manager = RestoreManager(config)
    result = await manager.restore(RestoreParams(
        backup_name="stream_20240115T101500Z",
        requesting_engine_version="6.0.1"
    ))
"""

__version__ = "1.0.0"

# Configuration
from .config import RestoreConfig

# Core
from .core import (
    RestoreManager,
    RestoreOrchestrator,
    ArtifactStore,
    FileSystemArtifactStore,
    LocalDataDirectory,
    MongodProcessControl,
    MongodAdminService,
    ensure_compatible
)

# Models
from .models.entities import (
    RestoreStage,
    EngineVariant,
    ChecksumAlgorithm,
    CompressionType,
    Timestamp,
    Sentinel,
    BackupFileMeta,
    BackupFilesMetadata,
    RestoreResult,
    RestoreProgress
)
from .models.parameters import RestoreParams

# Exceptions
from .exceptions import (
    RestoreError,
    MetadataFetchError,
    ManifestLayoutError,
    IncompatibleVersionError,
    MalformedVersionError,
    DirtyTargetDirectoryError,
    DirectoryPrepError,
    FileTransferError,
    EngineStartError,
    AdminOperationError,
    EngineShutdownError,
    EngineExitError,
    OwnershipFixError,
    RestoreCancelledError
)

# Utilities
from .utils import CancellationToken

__all__ = [
    '__version__',

    # Core
    'RestoreManager',
    'RestoreOrchestrator',
    'ArtifactStore',
    'FileSystemArtifactStore',
    'LocalDataDirectory',
    'MongodProcessControl',
    'MongodAdminService',
    'ensure_compatible',

    # Configuration
    'RestoreConfig',

    # Enums
    'RestoreStage',
    'EngineVariant',
    'ChecksumAlgorithm',
    'CompressionType',

    # Entities
    'Timestamp',
    'Sentinel',
    'BackupFileMeta',
    'BackupFilesMetadata',
    'RestoreResult',
    'RestoreProgress',

    # Parameters
    'RestoreParams',

    # Exceptions
    'RestoreError',
    'MetadataFetchError',
    'ManifestLayoutError',
    'IncompatibleVersionError',
    'MalformedVersionError',
    'DirtyTargetDirectoryError',
    'DirectoryPrepError',
    'FileTransferError',
    'EngineStartError',
    'AdminOperationError',
    'EngineShutdownError',
    'EngineExitError',
    'OwnershipFixError',
    'RestoreCancelledError',

    # Utilities
    'CancellationToken'
]
