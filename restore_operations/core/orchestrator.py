"""
Restore Orchestrator

Drives one binary restore from backup storage into a mongod data directory.

Stages run strictly in order and are never re-entered:

    FETCH_METADATA -> VALIDATE_PRECONDITIONS -> PREPARE_TARGET_DIRECTORY
    -> TRANSFER_FILES -> FIX_SYSTEM_DATA -> RECOVER_OPLOG_STANDALONE
    -> FIX_OWNERSHIP

The first failure ends the attempt. The raised exception is a
``RestoreError`` whose ``stage`` names the failing stage; the original cause
is chained. There is no retry and no rollback: a failed restore is re-run
from the beginning, which is safe because the target directory is wiped
again before any file is written.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple, Type

from ..config import RestoreConfig
from ..exceptions import (
    AdminOperationError,
    DirectoryPrepError,
    EngineExitError,
    EngineShutdownError,
    FileTransferError,
    MetadataFetchError,
    OwnershipFixError,
    RestoreCancelledError,
    RestoreError
)
from ..models.entities import (
    BackupFilesMetadata,
    EngineVariant,
    RestoreResult,
    RestoreStage,
    Sentinel,
    Timestamp
)
from ..utils.cancellation import CancellationToken
from ..utils.progress import RestoreProgressTracker
from .admin_service import MongodAdminService
from .artifact_store import ArtifactStore
from .compatibility import ensure_compatible
from .engine_process import TERMINATE_GRACE_PERIOD, MongodProcessControl, MongodProcessHandle, stop_process
from .local_storage import LocalDataDirectory

logger = logging.getLogger(__name__)

AdminServiceFactory = Callable[[str], MongodAdminService]

# Error type used when a stage fails with something that is not a RestoreError
_STAGE_ERRORS: Dict[RestoreStage, Type[RestoreError]] = {
    RestoreStage.FETCH_METADATA: MetadataFetchError,
    RestoreStage.PREPARE_TARGET_DIRECTORY: DirectoryPrepError,
    RestoreStage.TRANSFER_FILES: FileTransferError,
    RestoreStage.FIX_SYSTEM_DATA: AdminOperationError,
    RestoreStage.RECOVER_OPLOG_STANDALONE: AdminOperationError,
    RestoreStage.FIX_OWNERSHIP: OwnershipFixError,
}


async def _shielded(awaitable) -> Any:
    """
    Await ``awaitable`` to completion even if the calling task is cancelled.

    A cancellation that arrives meanwhile is re-raised once the operation
    has finished.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        if not task.done():
            await asyncio.wait({task})
        raise


class RestoreOrchestrator:
    """
    State machine for one binary restore.

    Collaborators are injected so each can be replaced independently; the
    cancellation token is shared with all of them.

    Attributes:
        current_stage: Stage currently running (or the last one reached)
        stage_timings_ms: Milliseconds spent in each finished stage
        files_restored: Files written so far
        bytes_restored: Bytes written so far

    Example:
        ```python
        orchestrator = RestoreOrchestrator(
            artifact_store=FileSystemArtifactStore("/mnt/backups", token),
            local_storage=LocalDataDirectory("/var/lib/mongodb", cancel_token=token),
            engine_control=MongodProcessControl("mongod", "/etc/mongod-restore.conf", cancel_token=token),
            admin_factory=MongodAdminService.factory(),
            config=config,
            cancel_token=token
        )
        result = await orchestrator.do_restore("6.0.1", "stream_20240115T101500Z")
        ```
    """

    # Seconds a terminated mongod gets before it is killed
    terminate_grace_period = TERMINATE_GRACE_PERIOD

    def __init__(
        self,
        artifact_store: ArtifactStore,
        local_storage: LocalDataDirectory,
        engine_control: MongodProcessControl,
        admin_factory: AdminServiceFactory,
        config: RestoreConfig,
        cancel_token: Optional[CancellationToken] = None
    ):
        self._artifact_store = artifact_store
        self._local_storage = local_storage
        self._engine_control = engine_control
        self._admin_factory = admin_factory
        self.config = config
        self._cancel_token = cancel_token or CancellationToken()

        self.backup_name: Optional[str] = None
        self.current_stage: RestoreStage = RestoreStage.FETCH_METADATA
        self.stage_timings_ms: Dict[str, float] = {}
        self.files_restored = 0
        self.bytes_restored = 0

    @asynccontextmanager
    async def _stage(self, stage: RestoreStage) -> AsyncIterator[None]:
        """Run one stage: log, time, and attach the stage to any failure."""
        self.current_stage = stage
        logger.info(f"Restore stage {stage.value} started")
        started = time.monotonic()
        try:
            self._cancel_token.raise_if_cancelled(stage.value)
            yield
        except RestoreError as e:
            if e.stage is None:
                e.stage = stage.value
            if e.backup_name is None:
                e.backup_name = self.backup_name
            raise
        except Exception as e:
            error = _STAGE_ERRORS.get(stage, RestoreError)(
                f"{stage.value} failed: {e}",
                context={"cause": type(e).__name__}
            )
            error.stage = stage.value
            error.backup_name = self.backup_name
            raise error from e
        finally:
            elapsed_ms = (time.monotonic() - started) * 1000
            self.stage_timings_ms[stage.value] = elapsed_ms
        logger.info(f"Restore stage {stage.value} finished in {elapsed_ms:.0f}ms")

    async def _run_blocking(self, func: Callable[..., Any], *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def do_restore(self, requesting_version: str, backup_name: str = "latest") -> RestoreResult:
        """
        Restore ``backup_name`` so that mongod ``requesting_version`` can serve it.

        Args:
            requesting_version: Version of the mongod that will use the data
            backup_name: Backup to restore; the most recent one by default

        Returns:
            RestoreResult describing the completed restore

        Raises:
            RestoreError: Subclass matching the first failure, with ``stage`` set
        """
        started = time.monotonic()
        self.backup_name = backup_name
        logger.info(f"Starting restore of backup {backup_name} for mongod {requesting_version}")

        try:
            async with self._stage(RestoreStage.FETCH_METADATA):
                sentinel, manifest = await self._fetch_metadata(backup_name)

            async with self._stage(RestoreStage.VALIDATE_PRECONDITIONS):
                await self._validate_preconditions(requesting_version, sentinel)

            async with self._stage(RestoreStage.PREPARE_TARGET_DIRECTORY):
                await self._prepare_target_directory(manifest)

            async with self._stage(RestoreStage.TRANSFER_FILES):
                await self._transfer_files(manifest)

            async with self._stage(RestoreStage.FIX_SYSTEM_DATA):
                await self._fix_system_data(sentinel.backup_last_ts)

            async with self._stage(RestoreStage.RECOVER_OPLOG_STANDALONE):
                await self._recover_oplog_standalone()

            async with self._stage(RestoreStage.FIX_OWNERSHIP):
                await self._fix_ownership()
        except RestoreError as e:
            logger.error(f"Restore of backup {self.backup_name} failed: {e}")
            raise

        self.current_stage = RestoreStage.COMPLETED
        execution_time_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"Restore of backup {self.backup_name} completed: {self.files_restored} files, "
            f"{self.bytes_restored} bytes in {execution_time_ms / 1000:.1f}s"
        )
        return RestoreResult(
            success=True,
            backup_name=self.backup_name,
            stage=RestoreStage.COMPLETED,
            files_restored=self.files_restored,
            bytes_restored=self.bytes_restored,
            execution_time_ms=execution_time_ms,
            stage_timings_ms=dict(self.stage_timings_ms)
        )

    async def _fetch_metadata(self, backup_name: str) -> Tuple[Sentinel, BackupFilesMetadata]:
        resolved = await self._artifact_store.resolve_backup_name(backup_name)
        self.backup_name = resolved

        sentinel = await self._artifact_store.fetch_sentinel(resolved)
        manifest = await self._artifact_store.fetch_files_metadata(resolved)
        manifest.validate_layout()

        logger.info(
            f"Backup {resolved}: mongod {sentinel.engine_version}, last write {sentinel.backup_last_ts}, "
            f"{len(manifest.files)} files ({manifest.total_bytes} bytes)"
        )
        return sentinel, manifest

    async def _validate_preconditions(self, requesting_version: str, sentinel: Sentinel) -> None:
        ensure_compatible(requesting_version, sentinel.engine_version, self.config.compatibility_policy)
        await self._run_blocking(self._local_storage.ensure_lock_file_is_empty)

    async def _prepare_target_directory(self, manifest: BackupFilesMetadata) -> None:
        await self._run_blocking(self._local_storage.cleanup_db_path)
        await self._run_blocking(self._local_storage.ensure_empty_db_path)
        await self._run_blocking(self._local_storage.create_directories, manifest.directories)

    async def _transfer_files(self, manifest: BackupFilesMetadata) -> None:
        tracker = RestoreProgressTracker(self.backup_name, len(manifest.files), manifest.total_bytes)
        tracker.start_tracking()

        for file_meta in manifest.files:
            self._cancel_token.raise_if_cancelled(f"copy {file_meta.path}")
            try:
                async with self._artifact_store.open_reader(self.backup_name, file_meta) as reader:
                    written = await self._local_storage.save_stream(
                        reader,
                        file_meta,
                        verify=self.config.verify_checksums,
                        progress=tracker
                    )
            except (FileTransferError, RestoreCancelledError):
                raise
            except Exception as e:
                raise FileTransferError(
                    f"bad backup file {file_meta.path}: {e}",
                    path=file_meta.path,
                    expected_size=file_meta.size
                ) from e

            self.files_restored += 1
            self.bytes_restored += written
            tracker.file_completed(file_meta.path)

    @asynccontextmanager
    async def engine_session(self, variant: EngineVariant) -> AsyncIterator[MongodAdminService]:
        """
        Run mongod in ``variant`` for the duration of the block.

        Yields an admin service bound to the process. On every exit path the
        process is asked to shut down and is then waited on exactly once; both
        steps run to completion even if the task is cancelled. An error from
        the block takes precedence over shutdown or exit errors, which are
        then only logged.

        If the admin service cannot be bound the process is terminated and
        reaped before the error propagates.

        Raises:
            EngineStartError: If the process does not start
            EngineShutdownError: If shutdown fails after a successful block
            EngineExitError: If the process exits abnormally after a successful block
        """
        handle = await self._engine_control.start_with_variant(variant)
        try:
            admin = self._admin_factory(handle.uri)
            await admin.ping()
        except BaseException as e:
            logger.error(f"Cannot bind admin session to mongod ({variant.value}, pid {handle.pid}): {e}")
            try:
                await _shielded(stop_process(handle, self.terminate_grace_period))
            except EngineExitError as exit_error:
                logger.debug(f"Terminated mongod: {exit_error.message}")
            raise

        body_failed = False
        try:
            yield admin
        except BaseException:
            body_failed = True
            raise
        finally:
            await self._end_session(handle, admin, body_failed)

    async def _end_session(self, handle: MongodProcessHandle, admin: MongodAdminService, body_failed: bool) -> None:
        shutdown_error: Optional[Exception] = None
        exit_error: Optional[EngineExitError] = None
        try:
            await _shielded(admin.shutdown())
        except Exception as e:
            shutdown_error = e
            logger.warning(f"Graceful shutdown of mongod (pid {handle.pid}) failed: {e}; terminating")
        finally:
            try:
                if shutdown_error is not None:
                    await _shielded(stop_process(handle, self.terminate_grace_period))
                else:
                    await _shielded(handle.wait())
            except EngineExitError as e:
                exit_error = e
                logger.warning(f"mongod (pid {handle.pid}) exited abnormally: {e.message}")

        if body_failed:
            return
        if shutdown_error is not None:
            if isinstance(shutdown_error, RestoreError):
                raise shutdown_error
            raise EngineShutdownError(f"shutdown failed: {shutdown_error}") from shutdown_error
        if exit_error is not None:
            raise exit_error

    async def _fix_system_data(self, backup_last_ts: Timestamp) -> None:
        async with self.engine_session(EngineVariant.DISABLE_SESSION_CACHE_REFRESH) as admin:
            self._cancel_token.raise_if_cancelled("fix system data")
            await admin.fix_system_data_after_restore(backup_last_ts)

    async def _recover_oplog_standalone(self) -> None:
        # Startup alone replays the oplog; the session shuts it down right away
        async with self.engine_session(EngineVariant.RECOVER_OPLOG_STANDALONE):
            self._cancel_token.raise_if_cancelled("recover oplog as standalone")

    async def _fix_ownership(self) -> None:
        if self.config.skip_ownership_fix:
            logger.info("Skipping ownership fix (disabled by configuration)")
            return
        await self._run_blocking(self._local_storage.fix_file_ownership)
