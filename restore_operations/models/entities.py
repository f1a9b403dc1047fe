"""
Restore Entities

Defines data models for binary restore operations: the backup sentinel, the
file manifest, oplog timestamps, pipeline stages, engine startup variants and
operation outcomes.

These models use Pydantic for validation and provide a type-safe interface
for the restore pipeline.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Any

from bson.timestamp import Timestamp as BsonTimestamp
from pydantic import BaseModel, Field, AliasChoices, field_validator

from ..exceptions import ManifestLayoutError


class RestoreStage(str, Enum):
    """
    Stages of the restore pipeline, in execution order.

    Stages:
        FETCH_METADATA: Download sentinel and file manifest
        VALIDATE_PRECONDITIONS: Version compatibility and lock file checks
        PREPARE_TARGET_DIRECTORY: Wipe dbPath and recreate directory tree
        TRANSFER_FILES: Stream every backup file into dbPath
        FIX_SYSTEM_DATA: Reconcile replication metadata in a special-mode mongod
        RECOVER_OPLOG_STANDALONE: Replay oplog in a standalone-recovery mongod
        FIX_OWNERSHIP: Fix file ownership and permissions
        COMPLETED: Terminal success state
        FAILED: Terminal failure state
    """
    FETCH_METADATA = "FETCH_METADATA"
    VALIDATE_PRECONDITIONS = "VALIDATE_PRECONDITIONS"
    PREPARE_TARGET_DIRECTORY = "PREPARE_TARGET_DIRECTORY"
    TRANSFER_FILES = "TRANSFER_FILES"
    FIX_SYSTEM_DATA = "FIX_SYSTEM_DATA"
    RECOVER_OPLOG_STANDALONE = "RECOVER_OPLOG_STANDALONE"
    FIX_OWNERSHIP = "FIX_OWNERSHIP"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @classmethod
    def pipeline(cls) -> List["RestoreStage"]:
        """Working stages in the order they run."""
        return [
            cls.FETCH_METADATA,
            cls.VALIDATE_PRECONDITIONS,
            cls.PREPARE_TARGET_DIRECTORY,
            cls.TRANSFER_FILES,
            cls.FIX_SYSTEM_DATA,
            cls.RECOVER_OPLOG_STANDALONE,
            cls.FIX_OWNERSHIP,
        ]


class EngineVariant(str, Enum):
    """
    Special startup modes used to finish a binary restore.

    Variants:
        DISABLE_SESSION_CACHE_REFRESH: Start without refreshing the logical
            session cache so system collections can be rewritten safely
        RECOVER_OPLOG_STANDALONE: Replay the oplog up to the recovery point
            while detached from any replica set
    """
    DISABLE_SESSION_CACHE_REFRESH = "DISABLE_SESSION_CACHE_REFRESH"
    RECOVER_OPLOG_STANDALONE = "RECOVER_OPLOG_STANDALONE"

    @property
    def set_parameters(self) -> Dict[str, str]:
        """``--setParameter`` values mongod needs for this variant."""
        if self == EngineVariant.DISABLE_SESSION_CACHE_REFRESH:
            return {"disableLogicalSessionCacheRefresh": "true"}
        return {
            "recoverFromOplogAsStandalone": "true",
            "takeUnstableCheckpointOnShutdown": "true",
        }


class ChecksumAlgorithm(str, Enum):
    """
    Supported checksum algorithms for data integrity verification.

    Algorithms:
        SHA256: SHA-256 hash (recommended for security)
        MD5: MD5 hash (faster, less secure)
        BLAKE2B: BLAKE2b hash (fast and secure)
    """
    SHA256 = "SHA256"
    MD5 = "MD5"
    BLAKE2B = "BLAKE2B"


class CompressionType(str, Enum):
    """Compression applied to a stored backup file."""
    NONE = "none"
    GZIP = "gzip"
    ZSTD = "zstd"

    @property
    def extension(self) -> str:
        return {"none": "", "gzip": ".gz", "zstd": ".zst"}[self.value]


class Timestamp(BaseModel):
    """
    MongoDB oplog timestamp.

    Attributes:
        ts: Seconds since the epoch
        inc: Ordinal of the operation within that second

    Example:
        ```python
        last_ts = Timestamp(ts=1700000000, inc=3)
        bson_ts = last_ts.to_bson()
        ```
    """
    ts: int = Field(..., ge=0, validation_alias=AliasChoices("ts", "TS"),
                    description="Seconds since the epoch")
    inc: int = Field(default=0, ge=0, validation_alias=AliasChoices("inc", "Inc"),
                     description="Increment within the second")

    class Config:
        frozen = True

    def to_bson(self) -> BsonTimestamp:
        """Convert to the BSON timestamp type used by the driver."""
        return BsonTimestamp(self.ts, self.inc)

    def __str__(self) -> str:
        return f"Timestamp({self.ts}, {self.inc})"


class Sentinel(BaseModel):
    """
    Immutable descriptor of one binary backup.

    Written by the backup side when a backup completes. The restore side only
    reads it; ``engine_version`` and ``backup_last_ts`` are the two fields the
    restore pipeline depends on.

    Attributes:
        backup_name: Name of the backup
        engine_version: mongod version that produced the backup
        backup_last_ts: Timestamp of the last write included in the backup
            (the oplog replay boundary)
        start_local_time: When the backup started
        finish_local_time: When the backup finished
        hostname: Host the backup was taken on
        uncompressed_size: Total size of the data files in bytes
        user_data: Arbitrary user-supplied metadata
        permanent: Whether the backup is excluded from retention
    """
    backup_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("backup_name", "BackupName"),
        description="Backup name"
    )
    engine_version: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("engine_version", "EngineVersion"),
        description="mongod version at backup time"
    )
    backup_last_ts: Timestamp = Field(
        ..., validation_alias=AliasChoices("backup_last_ts", "BackupLastTS"),
        description="Last write timestamp included in the backup"
    )
    start_local_time: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("start_local_time", "StartLocalTime")
    )
    finish_local_time: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("finish_local_time", "FinishLocalTime")
    )
    hostname: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("hostname", "Hostname")
    )
    uncompressed_size: int = Field(
        default=0, ge=0, validation_alias=AliasChoices("uncompressed_size", "UncompressedSize")
    )
    user_data: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("user_data", "UserData")
    )
    permanent: bool = Field(
        default=False, validation_alias=AliasChoices("permanent", "Permanent")
    )

    class Config:
        frozen = True


def _check_relative_path(value: str) -> str:
    normalized = value.replace("\\", "/").strip()
    if normalized in ("", "."):
        raise ValueError("path must not be empty")
    posix = PurePosixPath(normalized)
    if posix.is_absolute() or ".." in posix.parts:
        raise ValueError(f"path must be relative to the data directory: {value}")
    return str(posix)


class BackupFileMeta(BaseModel):
    """
    One file of a binary backup.

    ``path`` is both the object key suffix in backup storage and the
    destination inside the data directory.

    Attributes:
        path: Relative POSIX path of the file
        size: Uncompressed size in bytes, if recorded
        checksum: Hex digest of the uncompressed content (optional)
        checksum_algorithm: Algorithm used for ``checksum``
        compression: Compression applied to the stored object
        file_mode: Permission bits recorded at backup time (optional)
    """
    path: str = Field(..., validation_alias=AliasChoices("path", "Path"),
                      description="Relative file path")
    size: Optional[int] = Field(default=None, ge=0, validation_alias=AliasChoices("size", "Size"),
                                description="Uncompressed size in bytes (unchecked if unknown)")
    checksum: Optional[str] = Field(default=None, description="Hex digest of the file content")
    checksum_algorithm: ChecksumAlgorithm = Field(default=ChecksumAlgorithm.SHA256)
    compression: CompressionType = Field(default=CompressionType.NONE)
    file_mode: Optional[int] = Field(default=None, ge=0, le=0o7777,
                                     validation_alias=AliasChoices("file_mode", "FileMode"))

    class Config:
        frozen = True

    @field_validator("path")
    @classmethod
    def validate_path(cls, v):
        """Reject absolute paths and paths escaping the data directory."""
        return _check_relative_path(v)

    @property
    def parent(self) -> str:
        """Parent directory of the file, ``""`` for the data directory root."""
        parent = str(PurePosixPath(self.path).parent)
        return "" if parent == "." else parent


class BackupFilesMetadata(BaseModel):
    """
    Manifest of the filesystem shape of a binary backup.

    Attributes:
        directories: Relative directories to recreate, in order
        files: Files to restore, in order
    """
    directories: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("directories", "BackupDirectories"),
        description="Relative directory paths"
    )
    files: List[BackupFileMeta] = Field(
        default_factory=list,
        validation_alias=AliasChoices("files", "BackupFiles"),
        description="Backup files in manifest order"
    )

    class Config:
        frozen = True

    @property
    def total_bytes(self) -> int:
        return sum(f.size or 0 for f in self.files)

    def validate_layout(self) -> None:
        """
        Check that every file's parent directory is listed (or is the root).

        Raises:
            ManifestLayoutError: If a directory path is unsafe or a file's
                parent directory is missing from ``directories``
        """
        known = set()
        bad_dirs = []
        for directory in self.directories:
            try:
                known.add(_check_relative_path(directory))
            except ValueError:
                bad_dirs.append(directory)
        if bad_dirs:
            raise ManifestLayoutError(
                "Manifest contains unsafe directory paths",
                invalid_paths=bad_dirs
            )

        orphans = [f.path for f in self.files if f.parent and f.parent not in known]
        if orphans:
            raise ManifestLayoutError(
                f"{len(orphans)} file(s) have a parent directory missing from the manifest",
                invalid_paths=orphans
            )


class RestoreResult(BaseModel):
    """
    Result of a restore operation.

    Attributes:
        success: Whether the restore succeeded
        backup_name: Backup that was restored
        stage: Last stage reached (``COMPLETED`` on success)
        failed_stage: Stage that failed, if any
        files_restored: Number of files written to the data directory
        bytes_restored: Number of bytes written to the data directory
        execution_time_ms: Total time in milliseconds
        stage_timings_ms: Time spent in each completed stage
        error_message: Error message if the restore failed

    Example:
        ```python
        result = RestoreResult(
            success=True,
            backup_name="stream_20240115T101500Z",
            stage=RestoreStage.COMPLETED,
            files_restored=42,
            execution_time_ms=95000.0
        )
        ```
    """
    success: bool = Field(..., description="Whether restore succeeded")
    backup_name: str = Field(..., description="Backup name")
    stage: RestoreStage = Field(default=RestoreStage.FETCH_METADATA, description="Last stage reached")
    failed_stage: Optional[RestoreStage] = Field(default=None, description="Stage that failed")
    files_restored: int = Field(default=0, ge=0, description="Files written")
    bytes_restored: int = Field(default=0, ge=0, description="Bytes written")
    execution_time_ms: float = Field(default=0.0, ge=0.0, description="Execution time in milliseconds")
    stage_timings_ms: Dict[str, float] = Field(default_factory=dict, description="Per-stage timings")
    error_message: Optional[str] = Field(default=None, description="Error message if failed")

    @property
    def execution_time_seconds(self) -> float:
        """Get execution time in seconds."""
        return self.execution_time_ms / 1000.0


@dataclass
class RestoreProgress:
    """
    Snapshot of file transfer progress.

    Attributes:
        backup_name: Backup being restored
        files_done: Files fully written
        total_files: Files in the manifest
        bytes_processed: Bytes written so far
        total_bytes: Total bytes in the manifest
        percentage: Progress percentage (0-100)
        current_speed_mbps: Current speed in MB/s
        estimated_remaining_time_seconds: Estimated seconds remaining
    """
    backup_name: str
    files_done: int = 0
    total_files: int = 0
    bytes_processed: int = 0
    total_bytes: int = 0
    percentage: float = 0.0
    current_speed_mbps: Optional[float] = None
    estimated_remaining_time_seconds: Optional[float] = None

    @property
    def formatted_eta(self) -> Optional[str]:
        """Get formatted ETA string."""
        if self.estimated_remaining_time_seconds is None:
            return None

        seconds = int(self.estimated_remaining_time_seconds)
        if seconds < 60:
            return f"{seconds}s"
        elif seconds < 3600:
            minutes = seconds // 60
            secs = seconds % 60
            return f"{minutes}m {secs}s"
        else:
            hours = seconds // 3600
            minutes = (seconds % 3600) // 60
            return f"{hours}h {minutes}m"
