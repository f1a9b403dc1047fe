"""
Checksum Utilities

Incremental hashing of restored file content so manifest checksums can be
verified while a file streams into the data directory.
"""

import hashlib
import hmac
import logging
from typing import Callable, Dict

from ..models.entities import ChecksumAlgorithm

logger = logging.getLogger(__name__)

_HASH_FACTORIES: Dict[ChecksumAlgorithm, Callable] = {
    ChecksumAlgorithm.SHA256: hashlib.sha256,
    ChecksumAlgorithm.MD5: hashlib.md5,
    ChecksumAlgorithm.BLAKE2B: hashlib.blake2b,
}


class ChecksumCalculator:
    """
    Hashes restored data with the algorithm recorded in the manifest.

    Example:
        ```python
        calculator = ChecksumCalculator(file_meta.checksum_algorithm)
        hasher = calculator.new_hasher()
        for chunk in chunks:
            hasher.update(chunk)

        if not ChecksumCalculator.verify(file_meta.checksum, hasher.hexdigest()):
            ...
        ```
    """

    def __init__(self, algorithm: ChecksumAlgorithm = ChecksumAlgorithm.SHA256):
        if algorithm not in _HASH_FACTORIES:
            raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
        self.algorithm = algorithm

    def new_hasher(self):
        """Fresh ``hashlib`` object for incremental updates."""
        return _HASH_FACTORIES[self.algorithm]()

    def calculate_data_checksum(self, data: bytes) -> str:
        """Hex digest of ``data``."""
        hasher = self.new_hasher()
        hasher.update(data)
        return hasher.hexdigest()

    @staticmethod
    def verify(expected_checksum: str, actual_checksum: str) -> bool:
        """Compare two hex digests, ignoring case and surrounding whitespace."""
        matches = hmac.compare_digest(expected_checksum.strip().lower(), actual_checksum.strip().lower())
        if not matches:
            logger.debug(f"Checksum mismatch: expected {expected_checksum}, got {actual_checksum}")
        return matches
