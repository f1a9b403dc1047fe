"""
Restore Utilities

Exports utility classes for cooperative cancellation, checksum calculation,
streaming decompression and progress tracking.
"""

from .cancellation import CancellationToken
from .checksum import ChecksumCalculator
from .compression import StreamDecompressor
from .progress import RestoreProgressTracker

__all__ = [
    'CancellationToken',
    'ChecksumCalculator',
    'StreamDecompressor',
    'RestoreProgressTracker'
]
