"""Tests for cancellation, checksum, decompression and progress utilities."""

import asyncio
import gzip
import hashlib

import pytest
import zstandard

from restore_operations.exceptions import RestoreCancelledError
from restore_operations.models.entities import ChecksumAlgorithm, CompressionType
from restore_operations.utils import (
    CancellationToken,
    ChecksumCalculator,
    RestoreProgressTracker,
    StreamDecompressor
)


class TestCancellationToken:

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled("copy")

        token.cancel("SIGINT")
        token.cancel("second reason")

        assert token.is_cancelled
        assert token.reason == "SIGINT"
        with pytest.raises(RestoreCancelledError, match="copy cancelled: SIGINT"):
            token.raise_if_cancelled("copy")

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        token = CancellationToken()

        async def work():
            return 42

        assert await token.run(work(), "work") == 42

    @pytest.mark.asyncio
    async def test_run_propagates_errors(self):
        token = CancellationToken()

        async def work():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await token.run(work(), "work")

    @pytest.mark.asyncio
    async def test_run_interrupted_by_cancel(self):
        token = CancellationToken()
        finished = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(30)
            finally:
                finished.set()

        asyncio.get_running_loop().call_later(0.05, token.cancel, "stop")

        with pytest.raises(RestoreCancelledError):
            await token.run(slow(), "slow")

        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_run_after_cancel_does_not_start(self):
        token = CancellationToken()
        token.cancel()
        started = []

        async def work():
            started.append(True)

        with pytest.raises(RestoreCancelledError):
            await token.run(work(), "work")

        assert started == []


class TestChecksumCalculator:

    @pytest.mark.parametrize("algorithm, reference", [
        (ChecksumAlgorithm.SHA256, hashlib.sha256),
        (ChecksumAlgorithm.MD5, hashlib.md5),
        (ChecksumAlgorithm.BLAKE2B, hashlib.blake2b),
    ])
    def test_calculate(self, algorithm, reference):
        calculator = ChecksumCalculator(algorithm)
        assert calculator.calculate_data_checksum(b"wiredtiger") == reference(b"wiredtiger").hexdigest()

    def test_incremental_matches_whole(self):
        calculator = ChecksumCalculator()
        hasher = calculator.new_hasher()
        for chunk in (b"wired", b"tiger"):
            hasher.update(chunk)

        assert hasher.hexdigest() == calculator.calculate_data_checksum(b"wiredtiger")

    def test_verify_ignores_case_and_whitespace(self):
        digest = hashlib.sha256(b"x").hexdigest()

        assert ChecksumCalculator.verify(f" {digest.upper()}\n", digest)
        assert not ChecksumCalculator.verify(hashlib.sha256(b"y").hexdigest(), digest)


class TestStreamDecompressor:

    PAYLOAD = b"oplog entry " * 200

    @staticmethod
    def _feed(decompressor, stored, chunk_size=37):
        out = b"".join(
            decompressor.decompress(stored[i:i + chunk_size]) for i in range(0, len(stored), chunk_size)
        )
        return out + decompressor.flush()

    def test_passthrough(self):
        assert self._feed(StreamDecompressor(), self.PAYLOAD) == self.PAYLOAD

    def test_gzip(self):
        decompressor = StreamDecompressor(CompressionType.GZIP)
        assert self._feed(decompressor, gzip.compress(self.PAYLOAD)) == self.PAYLOAD

    def test_zstd(self):
        stored = zstandard.ZstdCompressor().compress(self.PAYLOAD)
        decompressor = StreamDecompressor(CompressionType.ZSTD)
        assert self._feed(decompressor, stored) == self.PAYLOAD

    @pytest.mark.parametrize("compression", [CompressionType.GZIP, CompressionType.ZSTD])
    def test_corrupt_stream(self, compression):
        with pytest.raises(IOError, match="Corrupt"):
            StreamDecompressor(compression).decompress(b"definitely not compressed data")

    def test_truncated_gzip(self):
        stored = gzip.compress(self.PAYLOAD)
        decompressor = StreamDecompressor(CompressionType.GZIP)
        decompressor.decompress(stored[:len(stored) // 2])

        with pytest.raises(IOError, match="Truncated"):
            decompressor.flush()


class TestRestoreProgressTracker:

    def test_percentage_by_bytes(self):
        tracker = RestoreProgressTracker("b", total_files=2, total_bytes=200)
        tracker.start_tracking()
        tracker.add_bytes(50)

        assert tracker.percentage == 25.0

    def test_percentage_by_files_without_sizes(self):
        tracker = RestoreProgressTracker("b", total_files=4, total_bytes=0)
        tracker.start_tracking()
        tracker.file_completed("a")

        assert tracker.percentage == 25.0
        assert tracker.estimate_remaining_seconds() is None

    def test_snapshot(self):
        tracker = RestoreProgressTracker("stream_1", total_files=1, total_bytes=10)
        tracker.start_tracking()
        tracker.add_bytes(10)
        tracker.file_completed("data.wt")

        progress = tracker.get_current_progress()

        assert progress.backup_name == "stream_1"
        assert progress.files_done == 1
        assert progress.bytes_processed == 10
        assert progress.percentage == 100.0
        assert progress.estimated_remaining_time_seconds is None

    def test_eta_from_speed_history(self):
        tracker = RestoreProgressTracker("b", total_files=1, total_bytes=1000)
        tracker.start_tracking()
        tracker.bytes_processed = 250
        tracker.speed_history.append(50.0)

        assert tracker.estimate_remaining_seconds() == pytest.approx(15.0)
