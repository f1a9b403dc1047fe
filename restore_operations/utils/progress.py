"""
Transfer Progress

Tracks how much of a backup has been written into the data directory and
estimates the time left from a moving window of recent throughput samples.
"""

import logging
import time
from collections import deque
from typing import Optional

from ..models.entities import RestoreProgress

logger = logging.getLogger(__name__)


class RestoreProgressTracker:
    """
    Progress of the file transfer stage of one restore.

    Example:
        ```python
        tracker = RestoreProgressTracker(
            backup_name="stream_20240115T101500Z",
            total_files=len(manifest.files),
            total_bytes=manifest.total_bytes
        )
        tracker.start_tracking()

        tracker.add_bytes(len(chunk))
        tracker.file_completed("collection-0-123.wt")

        print(f"{tracker.get_current_progress().percentage:.1f}% restored")
        ```
    """

    # Throughput samples kept for the moving average
    SPEED_HISTORY_SIZE = 10

    # Seconds between throughput samples
    SAMPLE_INTERVAL = 1.0

    # Seconds between INFO progress lines
    LOG_INTERVAL = 10.0

    def __init__(self, backup_name: str, total_files: int = 0, total_bytes: int = 0):
        self.backup_name = backup_name
        self.total_files = total_files
        self.total_bytes = total_bytes

        self.files_done = 0
        self.bytes_processed = 0
        self.speed_history: deque = deque(maxlen=self.SPEED_HISTORY_SIZE)

        self._started_at: Optional[float] = None
        self._sampled_at: Optional[float] = None
        self._sampled_bytes = 0
        self._logged_at: Optional[float] = None

    def start_tracking(self) -> None:
        now = time.monotonic()
        self._started_at = self._sampled_at = self._logged_at = now
        self.files_done = 0
        self.bytes_processed = 0
        self._sampled_bytes = 0
        self.speed_history.clear()
        logger.debug(
            f"Tracking transfer of {self.backup_name}: {self.total_files} files, {self.total_bytes} bytes"
        )

    def add_bytes(self, count: int) -> None:
        """Record ``count`` more bytes written to disk."""
        self.bytes_processed += count
        now = time.monotonic()
        self._sample(now)

        if self._logged_at is not None and now - self._logged_at >= self.LOG_INTERVAL:
            self._logged_at = now
            progress = self.get_current_progress()
            logger.info(
                f"Restore progress: {progress.percentage:.1f}% "
                f"({self.files_done}/{self.total_files} files, ETA {progress.formatted_eta or 'unknown'})"
            )

    def file_completed(self, path: str) -> None:
        self.files_done += 1
        logger.debug(f"File {self.files_done}/{self.total_files} done: {path}")

    def _sample(self, now: float) -> None:
        if self._sampled_at is None:
            return
        elapsed = now - self._sampled_at
        if elapsed < self.SAMPLE_INTERVAL:
            return
        delta = self.bytes_processed - self._sampled_bytes
        if delta > 0:
            self.speed_history.append(delta / elapsed)
        self._sampled_at = now
        self._sampled_bytes = self.bytes_processed

    @property
    def percentage(self) -> float:
        """Share of bytes written, or of files when the manifest has no sizes."""
        if self.total_bytes > 0:
            return min(100.0, 100.0 * self.bytes_processed / self.total_bytes)
        if self.total_files > 0:
            return min(100.0, 100.0 * self.files_done / self.total_files)
        return 0.0

    @property
    def average_speed_bps(self) -> Optional[float]:
        if not self.speed_history:
            return None
        return sum(self.speed_history) / len(self.speed_history)

    def estimate_remaining_seconds(self) -> Optional[float]:
        """Seconds left at the average speed, or None when unknown."""
        remaining = self.total_bytes - self.bytes_processed
        speed = self.average_speed_bps
        if self.total_bytes <= 0 or remaining <= 0 or not speed:
            return None
        return remaining / speed

    def get_current_progress(self) -> RestoreProgress:
        speed = self.average_speed_bps
        return RestoreProgress(
            backup_name=self.backup_name,
            files_done=self.files_done,
            total_files=self.total_files,
            bytes_processed=self.bytes_processed,
            total_bytes=self.total_bytes,
            percentage=self.percentage,
            current_speed_mbps=None if speed is None else speed / (1024 ** 2),
            estimated_remaining_time_seconds=self.estimate_remaining_seconds()
        )
