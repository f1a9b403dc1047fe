"""
Backup Artifact Store

Read-side access to binary backups: the sentinel, the file manifest and a
streaming reader per backup file.

``ArtifactStore`` is the interface the restore pipeline depends on.
``FileSystemArtifactStore`` implements it for a local directory or a mounted
bucket with the following layout:

    storage_root/
    ├── <backup_name>_backup_stop_sentinel.json
    └── <backup_name>/
        ├── mongod_backup_files_metadata.json
        └── files/
            ├── WiredTiger
            ├── collection-0-123.wt.zst
            └── journal/
                └── WiredTigerLog.0000000001
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, BinaryIO, List, Optional

from pydantic import ValidationError

from ..exceptions import MetadataFetchError
from ..models.entities import BackupFileMeta, BackupFilesMetadata, Sentinel
from ..utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _backup_order(sentinel: Sentinel):
    """Sort key: backups without a finish time first, then by finish time in UTC, then by name."""
    finished = sentinel.finish_local_time
    if finished is None:
        return (False, _EPOCH, sentinel.backup_name or "")
    # Offset-less times are taken as UTC
    if finished.tzinfo is None:
        finished = finished.replace(tzinfo=timezone.utc)
    return (True, finished.astimezone(timezone.utc), sentinel.backup_name or "")


class BackupFileReader:
    """
    Streaming reader over one stored backup file.

    Reads run in the default executor so the event loop keeps servicing
    cancellation while the disk (or network mount) is busy.
    """

    def __init__(self, fileobj: BinaryIO, key: str, cancel_token: CancellationToken):
        self._fileobj = fileobj
        self.key = key
        self._cancel_token = cancel_token
        self.closed = False

    async def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes; returns ``b""`` at end of stream."""
        self._cancel_token.raise_if_cancelled(f"read {self.key}")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fileobj.read, size)

    def close(self) -> None:
        if not self.closed:
            self._fileobj.close()
            self.closed = True


class ArtifactStore(ABC):
    """
    Interface to backup storage used by the restore pipeline.

    Implementations must raise ``MetadataFetchError`` for sentinel and
    manifest failures, and may raise any ``OSError`` from ``open_reader`` or
    ``read``; the pipeline attributes those to the file being copied.
    """

    @abstractmethod
    async def fetch_sentinel(self, backup_name: str) -> Sentinel:
        """Download and parse the sentinel of ``backup_name``."""

    @abstractmethod
    async def fetch_files_metadata(self, backup_name: str) -> BackupFilesMetadata:
        """Download and parse the file manifest of ``backup_name``."""

    @abstractmethod
    def open_reader(self, backup_name: str, file_meta: BackupFileMeta):
        """Async context manager yielding a reader with ``async read(size)``."""

    @abstractmethod
    async def list_backups(self) -> List[Sentinel]:
        """All backups in storage, oldest first."""

    async def resolve_backup_name(self, backup_name: str) -> str:
        """
        Map ``"latest"`` to the most recent backup name.

        Raises:
            MetadataFetchError: If ``"latest"`` was requested and no backups exist
        """
        if backup_name != "latest":
            return backup_name
        backups = await self.list_backups()
        if not backups:
            raise MetadataFetchError("No backups found in storage", object_key="latest")
        latest = backups[-1].backup_name
        logger.info(f"Resolved 'latest' to backup {latest}")
        return latest


class FileSystemArtifactStore(ArtifactStore):
    """
    Artifact store rooted at a local (or mounted) directory.

    Example:
        ```python
        store = FileSystemArtifactStore("/mnt/backups", cancel_token=token)
        sentinel = await store.fetch_sentinel("stream_20240115T101500Z")
        manifest = await store.fetch_files_metadata("stream_20240115T101500Z")

        async with store.open_reader(sentinel.backup_name, manifest.files[0]) as reader:
            chunk = await reader.read(1024 * 1024)
        ```
    """

    SENTINEL_SUFFIX = "_backup_stop_sentinel.json"
    FILES_METADATA_NAME = "mongod_backup_files_metadata.json"
    FILES_DIR = "files"

    def __init__(self, root: str, cancel_token: Optional[CancellationToken] = None):
        self.root = Path(root)
        self._cancel_token = cancel_token or CancellationToken()
        logger.info(f"FileSystemArtifactStore initialized with root: {self.root}")

    @staticmethod
    def _check_backup_name(backup_name: str) -> None:
        if not backup_name or "/" in backup_name or "\\" in backup_name or backup_name in (".", ".."):
            raise MetadataFetchError(f"Invalid backup name: {backup_name!r}", backup_name=backup_name)

    def sentinel_path(self, backup_name: str) -> Path:
        return self.root / f"{backup_name}{self.SENTINEL_SUFFIX}"

    def files_metadata_path(self, backup_name: str) -> Path:
        return self.root / backup_name / self.FILES_METADATA_NAME

    def file_path(self, backup_name: str, file_meta: BackupFileMeta) -> Path:
        """Stored location of a backup file, including its compression extension."""
        return self.root / backup_name / self.FILES_DIR / (file_meta.path + file_meta.compression.extension)

    async def _read_json(self, path: Path, backup_name: str) -> dict:
        self._cancel_token.raise_if_cancelled(f"fetch {path.name}")
        loop = asyncio.get_running_loop()
        try:
            raw = await self._cancel_token.run(
                loop.run_in_executor(None, path.read_bytes),
                f"fetch {path.name}"
            )
        except FileNotFoundError as e:
            raise MetadataFetchError(
                f"Backup object not found: {path}",
                object_key=str(path),
                backup_name=backup_name
            ) from e
        except OSError as e:
            raise MetadataFetchError(
                f"Failed to read backup object {path}: {e}",
                object_key=str(path),
                backup_name=backup_name
            ) from e

        try:
            data = json.loads(raw)
        except ValueError as e:
            raise MetadataFetchError(
                f"Backup object {path.name} is not valid JSON: {e}",
                object_key=str(path),
                backup_name=backup_name
            ) from e
        if not isinstance(data, dict):
            raise MetadataFetchError(
                f"Backup object {path.name} must contain a JSON object",
                object_key=str(path),
                backup_name=backup_name
            )
        return data

    async def fetch_sentinel(self, backup_name: str) -> Sentinel:
        self._check_backup_name(backup_name)
        path = self.sentinel_path(backup_name)
        data = await self._read_json(path, backup_name)
        try:
            sentinel = Sentinel.model_validate(data)
        except ValidationError as e:
            raise MetadataFetchError(
                f"Invalid sentinel: {e}",
                object_key=str(path),
                backup_name=backup_name
            ) from e

        if sentinel.backup_name is None:
            sentinel = sentinel.model_copy(update={"backup_name": backup_name})
        logger.debug(
            f"Fetched sentinel for {backup_name}: version={sentinel.engine_version}, "
            f"last_ts={sentinel.backup_last_ts}"
        )
        return sentinel

    async def fetch_files_metadata(self, backup_name: str) -> BackupFilesMetadata:
        self._check_backup_name(backup_name)
        path = self.files_metadata_path(backup_name)
        data = await self._read_json(path, backup_name)
        try:
            metadata = BackupFilesMetadata.model_validate(data)
        except ValidationError as e:
            raise MetadataFetchError(
                f"Invalid files metadata: {e}",
                object_key=str(path),
                backup_name=backup_name
            ) from e

        logger.debug(
            f"Fetched files metadata for {backup_name}: {len(metadata.directories)} directories, "
            f"{len(metadata.files)} files"
        )
        return metadata

    @asynccontextmanager
    async def open_reader(self, backup_name: str, file_meta: BackupFileMeta) -> AsyncIterator[BackupFileReader]:
        path = self.file_path(backup_name, file_meta)
        loop = asyncio.get_running_loop()
        fileobj = await loop.run_in_executor(None, open, path, "rb")
        reader = BackupFileReader(fileobj, str(path), self._cancel_token)
        try:
            yield reader
        finally:
            reader.close()
            logger.debug(f"Closed backup file reader {path}")

    async def list_backups(self) -> List[Sentinel]:
        """
        Scan storage for sentinels.

        Unreadable sentinels are skipped with a warning. Backups are ordered
        by finish time, falling back to name order for sentinels without one.
        """
        if not self.root.exists():
            return []

        sentinels = []
        for path in sorted(self.root.glob(f"*{self.SENTINEL_SUFFIX}")):
            backup_name = path.name[:-len(self.SENTINEL_SUFFIX)]
            try:
                sentinels.append(await self.fetch_sentinel(backup_name))
            except MetadataFetchError as e:
                logger.warning(f"Skipping unreadable backup {backup_name}: {e.message}")

        sentinels.sort(key=_backup_order)
        return sentinels
