"""
Local Data Directory

Everything the restore pipeline does to the target mongod data directory:
lock file inspection, destructive cleanup, directory tree creation,
streaming file writes and the final ownership pass.

Directory operations are synchronous; the orchestrator runs them in the
default executor. ``save_stream`` is a coroutine because it interleaves
reads from backup storage with writes to disk.
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, Optional

from ..exceptions import (
    DirtyTargetDirectoryError,
    DirectoryPrepError,
    FileTransferError,
    OwnershipFixError
)
from ..models.entities import BackupFileMeta
from ..utils.cancellation import CancellationToken
from ..utils.checksum import ChecksumCalculator
from ..utils.compression import StreamDecompressor
from ..utils.progress import RestoreProgressTracker

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".restore-tmp"


class LocalDataDirectory:
    """
    Target mongod data directory (dbPath).

    Attributes:
        db_path: Data directory root
        lock_file_name: Name of the mongod lock file inside ``db_path``
        owner_uid / owner_gid: Ownership applied by ``fix_file_ownership``
            (the current owner of ``db_path`` when None)
        file_mode / dir_mode: Permission bits applied by ``fix_file_ownership``
        read_chunk_size: Bytes requested from the backup reader per call

    Example:
        ```python
        data_dir = LocalDataDirectory("/var/lib/mongodb", cancel_token=token)
        data_dir.ensure_lock_file_is_empty()
        data_dir.cleanup_db_path()
        data_dir.ensure_empty_db_path()
        data_dir.create_directories(manifest.directories)

        async with store.open_reader(name, file_meta) as reader:
            await data_dir.save_stream(reader, file_meta)

        data_dir.fix_file_ownership()
        ```
    """

    def __init__(
        self,
        db_path: str,
        lock_file_name: str = "mongod.lock",
        owner_uid: Optional[int] = None,
        owner_gid: Optional[int] = None,
        file_mode: int = 0o600,
        dir_mode: int = 0o700,
        read_chunk_size: int = 1024 * 1024,
        cancel_token: Optional[CancellationToken] = None
    ):
        self.db_path = Path(db_path)
        self.lock_file_name = lock_file_name
        self.owner_uid = owner_uid
        self.owner_gid = owner_gid
        self.file_mode = file_mode
        self.dir_mode = dir_mode
        self.read_chunk_size = read_chunk_size
        self._cancel_token = cancel_token or CancellationToken()

        logger.info(f"LocalDataDirectory initialized for {self.db_path}")

    @property
    def lock_file_path(self) -> Path:
        return self.db_path / self.lock_file_name

    def _target(self, relative_path: str) -> Path:
        """Resolve a manifest path inside ``db_path``, refusing anything outside it."""
        target = (self.db_path / relative_path).resolve()
        root = self.db_path.resolve()
        if target != root and root not in target.parents:
            raise ValueError(f"Path escapes the data directory: {relative_path}")
        return target

    def ensure_lock_file_is_empty(self) -> None:
        """
        Check that the mongod lock file is absent or empty.

        Raises:
            DirtyTargetDirectoryError: If the lock file has content or cannot be inspected
        """
        lock_path = self.lock_file_path
        try:
            size = lock_path.stat().st_size
        except FileNotFoundError:
            logger.debug(f"No lock file at {lock_path}")
            return
        except OSError as e:
            raise DirtyTargetDirectoryError(
                f"Cannot inspect lock file {lock_path}: {e}",
                lock_file_path=str(lock_path)
            ) from e

        if size > 0:
            raise DirtyTargetDirectoryError(
                f"Lock file {lock_path} is not empty; is a mongod still running on {self.db_path}?",
                lock_file_path=str(lock_path),
                lock_file_size=size
            )
        logger.debug(f"Lock file {lock_path} is empty")

    def cleanup_db_path(self) -> None:
        """
        Remove every entry inside ``db_path``, keeping the directory itself.

        Creates ``db_path`` when it does not exist yet. Safe to call again
        after a partial failure.

        Raises:
            DirectoryPrepError: If an entry cannot be removed
        """
        if not self.db_path.exists():
            try:
                self.db_path.mkdir(parents=True, mode=self.dir_mode)
            except OSError as e:
                raise DirectoryPrepError(f"Cannot create data directory: {e}",
                                         directory=str(self.db_path)) from e
            logger.info(f"Created data directory {self.db_path}")
            return

        removed = 0
        for entry in self.db_path.iterdir():
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise DirectoryPrepError(f"Cannot remove {entry}: {e}", directory=str(entry)) from e
            removed += 1

        logger.info(f"Cleaned data directory {self.db_path} ({removed} entries removed)")

    def ensure_empty_db_path(self) -> None:
        """
        Raises:
            DirectoryPrepError: If ``db_path`` is missing or still has entries
        """
        try:
            leftovers = sorted(entry.name for entry in self.db_path.iterdir())
        except OSError as e:
            raise DirectoryPrepError(f"Cannot list data directory: {e}",
                                     directory=str(self.db_path)) from e
        if leftovers:
            raise DirectoryPrepError(
                f"Data directory is not empty after cleanup: {', '.join(leftovers[:5])}",
                directory=str(self.db_path),
                context={"entries": len(leftovers)}
            )

    def create_directories(self, directories: Iterable[str]) -> None:
        """
        Recreate the backup's directory tree under ``db_path``.

        Raises:
            DirectoryPrepError: If a directory cannot be created or lies outside ``db_path``
        """
        count = 0
        for directory in directories:
            try:
                self._target(directory).mkdir(parents=True, exist_ok=True, mode=self.dir_mode)
            except (OSError, ValueError) as e:
                raise DirectoryPrepError(f"Cannot create directory {directory}: {e}",
                                         directory=directory) from e
            count += 1
        logger.debug(f"Created {count} directories under {self.db_path}")

    async def save_stream(
        self,
        reader,
        file_meta: BackupFileMeta,
        decompress: bool = True,
        verify: bool = True,
        progress: Optional[RestoreProgressTracker] = None
    ) -> int:
        """
        Stream one backup file into the data directory.

        Data is written to a temporary sibling and renamed into place only
        after the size and checksum checks pass, so a failed copy never
        leaves a truncated file under the final name.

        Args:
            reader: Object with ``async read(size) -> bytes``
            file_meta: Manifest entry of the file
            decompress: Decompress according to ``file_meta.compression``
            verify: Check ``file_meta.checksum`` when the manifest carries one
            progress: Tracker updated with every written chunk

        Returns:
            Number of bytes written

        Raises:
            FileTransferError: On size or checksum mismatch
            RestoreCancelledError: If cancelled between chunks
            OSError: On read, write or decompression failures
        """
        target = self._target(file_meta.path)
        temp_path = target.with_name(target.name + TEMP_SUFFIX)
        decompressor = StreamDecompressor(file_meta.compression) if decompress else StreamDecompressor()
        hasher = ChecksumCalculator(file_meta.checksum_algorithm).new_hasher() \
            if verify and file_meta.checksum else None

        loop = asyncio.get_running_loop()
        written = 0

        out = await loop.run_in_executor(None, open, temp_path, "wb")
        try:
            try:
                while True:
                    self._cancel_token.raise_if_cancelled(f"copy {file_meta.path}")
                    chunk = await reader.read(self.read_chunk_size)
                    data = decompressor.decompress(chunk) if chunk else decompressor.flush()
                    if data:
                        await loop.run_in_executor(None, out.write, data)
                        if hasher is not None:
                            hasher.update(data)
                        written += len(data)
                        if progress is not None:
                            progress.add_bytes(len(data))
                    if not chunk:
                        break
                await loop.run_in_executor(None, out.flush)
                await loop.run_in_executor(None, os.fsync, out.fileno())
            finally:
                out.close()

            if file_meta.size is not None and written != file_meta.size:
                raise FileTransferError(
                    f"Size mismatch: expected {file_meta.size} bytes, wrote {written}",
                    path=file_meta.path,
                    expected_size=file_meta.size,
                    actual_size=written
                )

            if hasher is not None and not ChecksumCalculator.verify(file_meta.checksum, hasher.hexdigest()):
                raise FileTransferError(
                    f"Checksum mismatch ({file_meta.checksum_algorithm.value}): "
                    f"expected {file_meta.checksum}, got {hasher.hexdigest()}",
                    path=file_meta.path,
                    expected_size=file_meta.size,
                    actual_size=written
                )

            os.replace(temp_path, target)
        except BaseException:
            self._discard(temp_path)
            raise

        logger.debug(f"Restored {file_meta.path} ({written} bytes)")
        return written

    @staticmethod
    def _discard(temp_path: Path) -> None:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial file {temp_path}: {e}")

    def fix_file_ownership(self) -> int:
        """
        Apply owner and permission bits to every entry under ``db_path``.

        The owner defaults to the current owner of ``db_path``. On platforms
        without ``os.chown`` only permissions are applied.

        Returns:
            Number of entries updated (``db_path`` included)

        Raises:
            OwnershipFixError: If any entry cannot be updated
        """
        try:
            root_stat = self.db_path.stat()
        except OSError as e:
            raise OwnershipFixError(f"Cannot stat data directory: {e}", path=str(self.db_path)) from e

        uid = self.owner_uid if self.owner_uid is not None else root_stat.st_uid
        gid = self.owner_gid if self.owner_gid is not None else root_stat.st_gid
        can_chown = hasattr(os, "chown")

        def apply(path: str, mode: int) -> None:
            try:
                if can_chown:
                    os.chown(path, uid, gid, follow_symlinks=False)
                if not os.path.islink(path):
                    os.chmod(path, mode)
            except OSError as e:
                raise OwnershipFixError(f"Cannot fix ownership of {path}: {e}", path=path) from e

        count = 0
        apply(str(self.db_path), self.dir_mode)
        count += 1
        for dirpath, dirnames, filenames in os.walk(self.db_path):
            for name in dirnames:
                apply(os.path.join(dirpath, name), self.dir_mode)
                count += 1
            for name in filenames:
                apply(os.path.join(dirpath, name), self.file_mode)
                count += 1

        logger.info(f"Fixed ownership of {count} entries under {self.db_path} (uid={uid}, gid={gid})")
        return count
