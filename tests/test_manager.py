"""Tests for RestoreManager result reporting and per-request overrides."""

import pytest

from conftest import BACKUP_NAME, FakeAdminFactory, FakeEngineControl, write_backup
from mongo_ops_exceptions import ConfigurationError
from restore_operations.config import RestoreConfig
from restore_operations.core.local_storage import LocalDataDirectory
from restore_operations.core.manager import RestoreManager
from restore_operations.core.orchestrator import RestoreOrchestrator
from restore_operations.models import EngineVariant, RestoreParams, RestoreStage


class FakeEngineRestoreManager(RestoreManager):
    """RestoreManager wired to fake mongod collaborators."""

    def __init__(self, *args, events, admin_options=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.events = events
        self.admin_options = admin_options or {}
        self.built_configs = []

    def build_orchestrator(self, config):
        self.built_configs.append(config)
        return RestoreOrchestrator(
            artifact_store=self._artifact_store,
            local_storage=LocalDataDirectory(config.db_path, cancel_token=self._cancel_token),
            engine_control=FakeEngineControl(self.events),
            admin_factory=FakeAdminFactory(self.events, **self.admin_options),
            config=config,
            cancel_token=self._cancel_token
        )


@pytest.fixture
def config(storage_root, db_path):
    return RestoreConfig(storage_root=str(storage_root), db_path=str(db_path))


@pytest.fixture
def manager(config, events, cancel_token):
    return FakeEngineRestoreManager(config, cancel_token=cancel_token, events=events)


@pytest.mark.asyncio
async def test_successful_restore(manager, storage_root, db_path):
    write_backup(storage_root)

    result = await manager.restore(RestoreParams(backup_name=BACKUP_NAME, requesting_engine_version="6.0.4"))

    assert result.success
    assert result.stage == RestoreStage.COMPLETED
    assert result.failed_stage is None
    assert result.files_restored == 2
    assert set(result.stage_timings_ms) == {stage.value for stage in RestoreStage.pipeline()}
    assert (db_path / "journal" / "log1").read_bytes() == b"journal entry"


@pytest.mark.asyncio
async def test_failure_is_reported_not_raised(manager, storage_root, db_path):
    write_backup(storage_root, engine_version="6.0.1")
    (db_path / "keep.wt").write_bytes(b"keep")

    result = await manager.restore(RestoreParams(backup_name=BACKUP_NAME, requesting_engine_version="5.0.0"))

    assert not result.success
    assert result.stage == RestoreStage.FAILED
    assert result.failed_stage == RestoreStage.VALIDATE_PRECONDITIONS
    assert "5.0.0" in result.error_message
    assert (db_path / "keep.wt").exists()


@pytest.mark.asyncio
async def test_engine_failure_reports_stage(config, events, cancel_token, storage_root):
    write_backup(storage_root)
    manager = FakeEngineRestoreManager(
        config,
        cancel_token=cancel_token,
        events=events,
        admin_options={"variant": EngineVariant.DISABLE_SESSION_CACHE_REFRESH, "fail_fix": True}
    )

    result = await manager.restore(RestoreParams(backup_name=BACKUP_NAME, requesting_engine_version="6.0.1"))

    assert result.failed_stage == RestoreStage.FIX_SYSTEM_DATA
    assert result.files_restored == 2
    assert ("start", EngineVariant.RECOVER_OPLOG_STANDALONE) not in events


@pytest.mark.asyncio
async def test_cancelled_restore(manager, storage_root, cancel_token):
    write_backup(storage_root)
    cancel_token.cancel("SIGTERM")

    result = await manager.restore(RestoreParams(backup_name=BACKUP_NAME, requesting_engine_version="6.0.1"))

    assert not result.success
    assert result.failed_stage == RestoreStage.FETCH_METADATA
    assert "SIGTERM" in result.error_message


@pytest.mark.asyncio
async def test_latest_reports_resolved_name(manager, storage_root):
    write_backup(storage_root, name="stream_old", finish_time="2024-01-01T00:00:00")
    write_backup(storage_root, name="stream_new", finish_time="2024-03-01T00:00:00")

    result = await manager.restore(RestoreParams(backup_name="latest", requesting_engine_version="6.0.1"))

    assert result.success
    assert result.backup_name == "stream_new"


@pytest.mark.asyncio
async def test_request_overrides(events, cancel_token, storage_root, db_path):
    write_backup(storage_root)
    config = RestoreConfig(storage_root=str(storage_root), db_path=str(db_path), verify_checksums=True)
    manager = FakeEngineRestoreManager(config, cancel_token=cancel_token, events=events)

    await manager.restore(RestoreParams(
        backup_name=BACKUP_NAME,
        requesting_engine_version="6.0.1",
        verify_checksums=False,
        skip_ownership_fix=True,
        compatibility_policy="exact"
    ))

    effective = manager.built_configs[-1]
    assert not effective.verify_checksums
    assert effective.skip_ownership_fix
    assert effective.compatibility_policy == "exact"
    # Configured defaults are untouched
    assert manager.config.verify_checksums
    assert manager.config.compatibility_policy == "same_major_not_newer"


@pytest.mark.asyncio
async def test_request_cannot_enable_disabled_verification(events, cancel_token, storage_root, db_path):
    write_backup(storage_root)
    config = RestoreConfig(storage_root=str(storage_root), db_path=str(db_path), verify_checksums=False)
    manager = FakeEngineRestoreManager(config, cancel_token=cancel_token, events=events)

    await manager.restore(RestoreParams(backup_name=BACKUP_NAME, requesting_engine_version="6.0.1"))

    assert not manager.built_configs[-1].verify_checksums


@pytest.mark.asyncio
async def test_unknown_policy_override(manager):
    with pytest.raises(ConfigurationError):
        await manager.restore(RestoreParams(
            backup_name=BACKUP_NAME,
            requesting_engine_version="6.0.1",
            compatibility_policy="anything_goes"
        ))


@pytest.mark.asyncio
async def test_list_backups(manager, storage_root):
    write_backup(storage_root, name="stream_b", finish_time="2024-02-01T00:00:00")
    write_backup(storage_root, name="stream_a", finish_time="2024-01-01T00:00:00")

    backups = await manager.list_backups()

    assert [b.backup_name for b in backups] == ["stream_a", "stream_b"]
