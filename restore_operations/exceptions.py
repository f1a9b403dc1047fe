"""
Restore Operation Exceptions

Defines a granular exception hierarchy for the binary restore pipeline.
Every failure that can end a restore attempt maps to exactly one exception
type, and each carries the pipeline stage it happened in so callers can
report the first failing stage without parsing messages.

All restore exceptions are terminal for the current attempt. The original
cause is always preserved via exception chaining (``raise ... from err``).
"""

from typing import Optional, Dict, Any, List

from mongo_ops_exceptions import EngineError, OperationCancelledError, RestoreFailedError, StorageError


class RestoreError(RestoreFailedError):
    """
    Base exception for all restore operations.

    Provides common context attributes that are useful for debugging and
    error reporting. Subclasses define a ``default_stage`` which is used
    when the raiser does not know (or does not pass) the stage explicitly.

    Attributes:
        message: Human-readable error message
        stage: Restore stage the failure belongs to (``RestoreStage`` value)
        backup_name: Name of the backup being restored (if known)
        context: Additional context information as key-value pairs

    Example:
        ```python
        try:
            await orchestrator.do_restore("6.0.1")
        except RestoreError as e:
            logger.error(f"Restore failed at {e.stage}: {e.message}")
        ```
    """

    default_stage: Optional[str] = None

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        backup_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.stage = stage if stage is not None else self.default_stage
        self.backup_name = backup_name
        self.context = context or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.stage:
            parts.append(f"Stage: {self.stage}")
        if self.backup_name:
            parts.append(f"Backup: {self.backup_name}")
        if self.context:
            parts.append(f"Context: {self.context}")
        return " | ".join(parts)


class MetadataFetchError(RestoreError, StorageError):
    """
    Sentinel or file manifest could not be fetched or parsed.

    Raised before anything on disk has been touched.

    Additional Attributes:
        object_key: Storage key of the object that failed
    """

    default_stage = "FETCH_METADATA"

    def __init__(
        self,
        message: str,
        object_key: Optional[str] = None,
        stage: Optional[str] = None,
        backup_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, stage, backup_name, context)
        self.object_key = object_key


class ManifestLayoutError(MetadataFetchError):
    """
    File manifest violates its layout invariants.

    Raised when a file's parent directory is not listed in the manifest or
    when a path is absolute or escapes the data directory.

    Additional Attributes:
        invalid_paths: Paths that violated the layout
    """

    def __init__(
        self,
        message: str,
        invalid_paths: Optional[List[str]] = None,
        backup_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, None, None, backup_name, context)
        self.invalid_paths = invalid_paths or []


class IncompatibleVersionError(RestoreError):
    """
    Backup cannot be consumed by the requesting mongod version.

    Additional Attributes:
        requesting_version: Version of the mongod that will serve the data
        backup_version: Version of the mongod that produced the backup
        policy: Name of the compatibility policy that rejected the pair

    Example:
        ```python
        raise IncompatibleVersionError(
            message="Backup major version differs from requesting version",
            requesting_version="5.0.0",
            backup_version="6.0.1",
            policy="same_major_not_newer"
        )
        ```
    """

    default_stage = "VALIDATE_PRECONDITIONS"

    def __init__(
        self,
        message: str,
        requesting_version: Optional[str] = None,
        backup_version: Optional[str] = None,
        policy: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context=context)
        self.requesting_version = requesting_version
        self.backup_version = backup_version
        self.policy = policy


class MalformedVersionError(RestoreError):
    """Version string could not be parsed as a semantic version."""

    default_stage = "VALIDATE_PRECONDITIONS"

    def __init__(self, message: str, version: Optional[str] = None):
        super().__init__(message)
        self.version = version


class DirtyTargetDirectoryError(RestoreError):
    """
    Target data directory holds a non-empty lock file.

    A non-empty ``mongod.lock`` means a previous mongod did not shut down
    cleanly (or is still running). The restore aborts before deleting
    anything.

    Additional Attributes:
        lock_file_path: Path of the offending lock file
        lock_file_size: Size of the lock file in bytes
    """

    default_stage = "VALIDATE_PRECONDITIONS"

    def __init__(
        self,
        message: str,
        lock_file_path: Optional[str] = None,
        lock_file_size: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context=context)
        self.lock_file_path = lock_file_path
        self.lock_file_size = lock_file_size


class DirectoryPrepError(RestoreError, StorageError):
    """Target data directory could not be cleared or its tree recreated."""

    default_stage = "PREPARE_TARGET_DIRECTORY"

    def __init__(
        self,
        message: str,
        directory: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context=context)
        self.directory = directory


class FileTransferError(RestoreError, StorageError):
    """
    A single backup file could not be copied into the data directory.

    Additional Attributes:
        path: Relative manifest path of the file that failed
        expected_size: Size recorded in the manifest
        actual_size: Number of bytes actually written (if known)
    """

    default_stage = "TRANSFER_FILES"

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        expected_size: Optional[int] = None,
        actual_size: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context=context)
        self.path = path
        self.expected_size = expected_size
        self.actual_size = actual_size

    def __str__(self) -> str:
        base = super().__str__()
        if self.path:
            return f"{base} | File: {self.path}"
        return base


class EngineStartError(RestoreError, EngineError):
    """
    mongod could not be started in the requested configuration variant.

    Additional Attributes:
        variant: Configuration variant that was requested
        returncode: Exit code if the process died during startup
    """

    def __init__(
        self,
        message: str,
        variant: Optional[str] = None,
        returncode: Optional[int] = None,
        stage: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, stage=stage, context=context)
        self.variant = variant
        self.returncode = returncode


class AdminOperationError(RestoreError, EngineError):
    """
    An administrative command against a running mongod failed.

    Additional Attributes:
        operation: Name of the administrative operation
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        stage: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, stage=stage, context=context)
        self.operation = operation


class EngineShutdownError(RestoreError, EngineError):
    """Graceful shutdown of a special-mode mongod could not be requested."""


class EngineExitError(RestoreError, EngineError):
    """
    A special-mode mongod exited abnormally.

    Additional Attributes:
        returncode: Process exit code
        pid: Process identifier
    """

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        pid: Optional[int] = None,
        stage: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, stage=stage, context=context)
        self.returncode = returncode
        self.pid = pid


class OwnershipFixError(RestoreError, StorageError):
    """On-disk ownership or permissions of the restored files could not be fixed."""

    default_stage = "FIX_OWNERSHIP"

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, context=context)
        self.path = path


class RestoreCancelledError(RestoreError, OperationCancelledError):
    """Restore was cancelled through its cancellation token."""
