"""
Compression Utilities

Provides streaming decompression of stored backup files. Backup objects may
be stored raw, gzip-compressed or zstandard-compressed; the restore side
decompresses them chunk by chunk while writing into the data directory.
"""

import logging
import zlib

import zstandard as zstd

from ..models.entities import CompressionType

logger = logging.getLogger(__name__)


class StreamDecompressor:
    """
    Incremental decompressor for one stored backup file.

    Example:
        ```python
        decompressor = StreamDecompressor(CompressionType.ZSTD)
        while chunk := await reader.read(size):
            out.write(decompressor.decompress(chunk))
        out.write(decompressor.flush())
        ```
    """

    def __init__(self, compression: CompressionType = CompressionType.NONE):
        self.compression = compression
        if compression == CompressionType.GZIP:
            # 16 + MAX_WBITS selects the gzip container
            self._obj = zlib.decompressobj(16 + zlib.MAX_WBITS)
        elif compression == CompressionType.ZSTD:
            self._obj = zstd.ZstdDecompressor().decompressobj()
        else:
            self._obj = None
        logger.debug(f"StreamDecompressor initialized for {compression.value}")

    def decompress(self, chunk: bytes) -> bytes:
        """
        Decompress one chunk of stored data.

        Raises:
            IOError: If the data is not valid for the configured format
        """
        if self._obj is None:
            return chunk
        try:
            return self._obj.decompress(chunk)
        except (zlib.error, zstd.ZstdError) as e:
            raise IOError(f"Corrupt {self.compression.value} stream: {e}") from e

    def flush(self) -> bytes:
        """Return any buffered output once the input is exhausted."""
        if self.compression == CompressionType.GZIP:
            tail = self._obj.flush()
            if not self._obj.eof:
                raise IOError("Truncated gzip stream")
            return tail
        if self.compression == CompressionType.ZSTD:
            return self._obj.flush()
        return b""
