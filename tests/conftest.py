"""Global pytest configuration, backup fixtures and engine fakes."""

import asyncio
import gzip
import hashlib
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import zstandard

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from restore_operations.config import RestoreConfig
from restore_operations.core.artifact_store import FileSystemArtifactStore
from restore_operations.core.local_storage import LocalDataDirectory
from restore_operations.core.orchestrator import RestoreOrchestrator
from restore_operations.exceptions import (
    AdminOperationError,
    EngineExitError,
    EngineShutdownError,
    EngineStartError
)
from restore_operations.models.entities import EngineVariant, Timestamp
from restore_operations.utils.cancellation import CancellationToken


BACKUP_NAME = "stream_20240115T101500Z"
LAST_TS = {"TS": 1705313700, "Inc": 7}


def write_backup(
    root: Path,
    name: str = BACKUP_NAME,
    engine_version: str = "6.0.1",
    last_ts: Optional[dict] = None,
    directories: Optional[List[str]] = None,
    files: Optional[Dict[str, bytes]] = None,
    compression: str = "none",
    with_checksums: bool = True,
    finish_time: Optional[str] = None
) -> Path:
    """Lay out a backup under ``root`` the way FileSystemArtifactStore expects it."""
    directories = ["journal"] if directories is None else directories
    files = {"data.wt": b"collection data" * 100, "journal/log1": b"journal entry"} if files is None else files

    root.mkdir(parents=True, exist_ok=True)
    sentinel = {
        "BackupName": name,
        "EngineVersion": engine_version,
        "BackupLastTS": last_ts or LAST_TS,
        "Hostname": "mongo-1",
    }
    if finish_time:
        sentinel["FinishLocalTime"] = finish_time
    (root / f"{name}_backup_stop_sentinel.json").write_text(json.dumps(sentinel))

    files_dir = root / name / "files"
    manifest_files = []
    for path, content in files.items():
        entry = {"path": path, "size": len(content), "compression": compression}
        if with_checksums:
            entry["checksum"] = hashlib.sha256(content).hexdigest()

        if compression == "gzip":
            stored, suffix = gzip.compress(content), ".gz"
        elif compression == "zstd":
            stored, suffix = zstandard.ZstdCompressor().compress(content), ".zst"
        else:
            stored, suffix = content, ""

        target = files_dir / (path + suffix)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(stored)
        manifest_files.append(entry)

    (root / name).mkdir(parents=True, exist_ok=True)
    (root / name / "mongod_backup_files_metadata.json").write_text(json.dumps({
        "BackupDirectories": directories,
        "BackupFiles": manifest_files,
    }))
    return root


class FakeHandle:
    """Stand-in for MongodProcessHandle recording its lifecycle."""

    def __init__(self, variant: EngineVariant, events: list, exit_code: int = 0, ignores_sigterm: bool = False):
        self.variant = variant
        self.uri = f"mongodb://fake-{variant.value}"
        self.pid = 4242
        self.events = events
        self.exit_code = exit_code
        self.wait_calls = 0
        self.terminated = False
        self.ignores_sigterm = ignores_sigterm
        self._killed = asyncio.Event()

    async def wait(self) -> int:
        self.wait_calls += 1
        self.events.append(("wait", self.variant))
        if self.ignores_sigterm:
            await self._killed.wait()
        if self.exit_code != 0:
            raise EngineExitError(f"exited with {self.exit_code}", returncode=self.exit_code, pid=self.pid)
        return 0

    def terminate(self) -> None:
        self.terminated = True
        self.events.append(("terminate", self.variant))

    def kill(self) -> None:
        self.events.append(("kill", self.variant))
        self.exit_code = -9
        self._killed.set()


class FakeEngineControl:
    """Stand-in for MongodProcessControl."""

    def __init__(self, events: list, fail_start: Optional[EngineVariant] = None,
                 exit_codes: Optional[Dict[EngineVariant, int]] = None, ignores_sigterm: Optional[EngineVariant] = None):
        self.events = events
        self.fail_start = fail_start
        self.exit_codes = exit_codes or {}
        self.ignores_sigterm = ignores_sigterm
        self.handles: List[FakeHandle] = []

    async def start_with_variant(self, variant: EngineVariant) -> FakeHandle:
        self.events.append(("start", variant))
        if variant == self.fail_start:
            raise EngineStartError("mongod did not become ready", variant=variant.value)
        handle = FakeHandle(variant, self.events, self.exit_codes.get(variant, 0),
                            ignores_sigterm=variant == self.ignores_sigterm)
        self.handles.append(handle)
        return handle


class FakeAdmin:
    """Stand-in for MongodAdminService."""

    def __init__(self, variant: EngineVariant, events: list, fail_ping=False, fail_fix=False,
                 fail_shutdown=False, on_fix=None):
        self.variant = variant
        self.events = events
        self.fail_ping = fail_ping
        self.fail_fix = fail_fix
        self.fail_shutdown = fail_shutdown
        self.on_fix = on_fix
        self.fixed_with: List[Timestamp] = []

    async def ping(self) -> None:
        if self.fail_ping:
            raise AdminOperationError("ping failed", operation="ping")

    async def fix_system_data_after_restore(self, last_write_ts: Timestamp) -> None:
        self.events.append(("fix_system_data", last_write_ts))
        self.fixed_with.append(last_write_ts)
        if self.on_fix:
            self.on_fix()
        if self.fail_fix:
            raise AdminOperationError("update failed", operation="fix_system_data_after_restore")

    async def shutdown(self) -> None:
        self.events.append(("shutdown", self.variant))
        if self.fail_shutdown:
            raise EngineShutdownError("shutdown rejected")


class FakeAdminFactory:
    """``uri -> FakeAdmin`` factory; options apply to the admin of ``variant`` only."""

    def __init__(self, events: list, variant: Optional[EngineVariant] = None, **options):
        self.events = events
        self.variant = variant
        self.options = options
        self.admins: List[FakeAdmin] = []

    def __call__(self, uri: str) -> FakeAdmin:
        variant = EngineVariant(uri.rsplit("fake-", 1)[1])
        options = self.options if self.variant in (None, variant) else {}
        admin = FakeAdmin(variant, self.events, **options)
        self.admins.append(admin)
        return admin


class RecordingDataDirectory(LocalDataDirectory):
    """LocalDataDirectory that records the ownership pass."""

    def __init__(self, *args, events: list, **kwargs):
        super().__init__(*args, **kwargs)
        self.events = events

    def fix_file_ownership(self) -> int:
        self.events.append(("fix_ownership", None))
        return super().fix_file_ownership()


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def storage_root(tmp_path) -> Path:
    return tmp_path / "backups"


@pytest.fixture
def db_path(tmp_path) -> Path:
    path = tmp_path / "db"
    path.mkdir()
    return path


@pytest.fixture
def cancel_token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def make_orchestrator(storage_root, db_path, events, cancel_token):
    """Build an orchestrator over real storage/data directory and fake engine collaborators."""

    def _make(engine_control=None, admin_factory=None, artifact_store=None, **config_overrides):
        config = RestoreConfig(
            storage_root=str(storage_root),
            db_path=str(db_path),
            **config_overrides
        )
        orchestrator = RestoreOrchestrator(
            artifact_store=artifact_store or FileSystemArtifactStore(str(storage_root), cancel_token=cancel_token),
            local_storage=RecordingDataDirectory(
                str(db_path),
                lock_file_name=config.lock_file_name,
                read_chunk_size=64,
                cancel_token=cancel_token,
                events=events
            ),
            engine_control=engine_control or FakeEngineControl(events),
            admin_factory=admin_factory or FakeAdminFactory(events),
            config=config,
            cancel_token=cancel_token
        )
        return orchestrator

    return _make
