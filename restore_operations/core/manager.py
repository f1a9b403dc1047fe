"""
Restore Manager

Main entry point for binary restores: wires storage, the data directory,
mongod process control and admin sessions into a ``RestoreOrchestrator``
and turns the outcome into a ``RestoreResult``.
"""

import asyncio
import dataclasses
import logging
import time
from typing import List, Optional

from mongo_ops_exceptions import MongoOpsError
from ..config import RestoreConfig
from ..exceptions import RestoreError
from ..models.entities import RestoreResult, RestoreStage, Sentinel
from ..models.parameters import RestoreParams
from ..utils.cancellation import CancellationToken
from .admin_service import MongodAdminService
from .artifact_store import ArtifactStore, FileSystemArtifactStore
from .engine_process import MongodProcessControl
from .local_storage import LocalDataDirectory
from .orchestrator import RestoreOrchestrator

logger = logging.getLogger(__name__)


class RestoreManager:
    """
    Manages binary restores into one mongod data directory.

    Only one restore runs at a time per manager. Failures are reported in
    the returned ``RestoreResult`` rather than raised.

    Example:
        ```python
        token = CancellationToken()
        manager = RestoreManager(RestoreConfig.from_settings(load_settings()), cancel_token=token)

        result = await manager.restore(RestoreParams(
            backup_name="latest",
            requesting_engine_version="6.0.1"
        ))
        if not result.success:
            print(f"Failed at {result.failed_stage}: {result.error_message}")
        ```
    """

    def __init__(
        self,
        config: Optional[RestoreConfig] = None,
        cancel_token: Optional[CancellationToken] = None,
        artifact_store: Optional[ArtifactStore] = None
    ):
        """
        Args:
            config: Restore configuration (uses defaults if None)
            cancel_token: Token cancelling the running restore
            artifact_store: Backup storage (filesystem store at ``config.storage_root`` if None)
        """
        self._config = config or RestoreConfig()
        self._cancel_token = cancel_token or CancellationToken()
        self._artifact_store = artifact_store or FileSystemArtifactStore(
            self._config.storage_root,
            cancel_token=self._cancel_token
        )
        self._restore_lock = asyncio.Lock()

        logger.info(f"RestoreManager initialized: {self._config!r}")

    @property
    def config(self) -> RestoreConfig:
        return self._config

    def _effective_config(self, params: RestoreParams) -> RestoreConfig:
        """Apply per-request overrides on top of the configured defaults."""
        overrides = {
            "verify_checksums": self._config.verify_checksums and params.verify_checksums,
            "skip_ownership_fix": self._config.skip_ownership_fix or params.skip_ownership_fix,
        }
        if params.compatibility_policy is not None:
            overrides["compatibility_policy"] = params.compatibility_policy
        return dataclasses.replace(self._config, **overrides)

    def build_orchestrator(self, config: RestoreConfig) -> RestoreOrchestrator:
        """Wire a fresh orchestrator for one restore run."""
        local_storage = LocalDataDirectory(
            db_path=config.db_path,
            lock_file_name=config.lock_file_name,
            owner_uid=config.owner_uid,
            owner_gid=config.owner_gid,
            file_mode=config.file_mode,
            dir_mode=config.dir_mode,
            read_chunk_size=config.read_chunk_size,
            cancel_token=self._cancel_token
        )
        engine_control = MongodProcessControl(
            mongod_binary=config.mongod_binary,
            config_path=config.mongod_config_path,
            host=config.mongod_host,
            port=config.mongod_port,
            startup_timeout=config.startup_timeout,
            readiness_poll_interval=config.readiness_poll_interval,
            cancel_token=self._cancel_token
        )
        return RestoreOrchestrator(
            artifact_store=self._artifact_store,
            local_storage=local_storage,
            engine_control=engine_control,
            admin_factory=MongodAdminService.factory(
                app_name=config.app_name,
                server_selection_timeout_ms=config.server_selection_timeout_ms
            ),
            config=config,
            cancel_token=self._cancel_token
        )

    async def restore(self, params: RestoreParams) -> RestoreResult:
        """
        Restore a backup.

        Args:
            params: Restore parameters

        Returns:
            RestoreResult with operation status

        Raises:
            ConfigurationError: If the per-request overrides are invalid
        """
        config = self._effective_config(params)

        async with self._restore_lock:
            orchestrator = self.build_orchestrator(config)
            start_time = time.monotonic()
            try:
                return await orchestrator.do_restore(params.requesting_engine_version, params.backup_name)
            except MongoOpsError as e:
                failed_stage = RestoreStage(e.stage) if isinstance(e, RestoreError) and e.stage else \
                    orchestrator.current_stage
                return RestoreResult(
                    success=False,
                    backup_name=orchestrator.backup_name or params.backup_name,
                    stage=RestoreStage.FAILED,
                    failed_stage=failed_stage,
                    files_restored=orchestrator.files_restored,
                    bytes_restored=orchestrator.bytes_restored,
                    execution_time_ms=(time.monotonic() - start_time) * 1000,
                    stage_timings_ms=dict(orchestrator.stage_timings_ms),
                    error_message=str(e)
                )

    async def list_backups(self) -> List[Sentinel]:
        """
        List available backups, oldest first.

        Returns:
            List of backup sentinels
        """
        backups = await self._artifact_store.list_backups()
        logger.info(f"Found {len(backups)} backups")
        return backups
