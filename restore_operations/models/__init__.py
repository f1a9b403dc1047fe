"""
Restore Models

Exports all data models, entities, and parameters for restore operations.
"""

from .entities import (
    RestoreStage,
    EngineVariant,
    ChecksumAlgorithm,
    CompressionType,
    Timestamp,
    Sentinel,
    BackupFileMeta,
    BackupFilesMetadata,
    RestoreResult,
    RestoreProgress
)

from .parameters import RestoreParams

__all__ = [
    # Enums
    'RestoreStage',
    'EngineVariant',
    'ChecksumAlgorithm',
    'CompressionType',

    # Entities
    'Timestamp',
    'Sentinel',
    'BackupFileMeta',
    'BackupFilesMetadata',
    'RestoreResult',
    'RestoreProgress',

    # Parameters
    'RestoreParams'
]
