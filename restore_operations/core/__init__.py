"""
Restore Core

Core classes for binary restore operations: backup storage access, the
target data directory, mongod process control and administration, version
compatibility, and the restore state machine.
"""

from .admin_service import MongodAdminService
from .artifact_store import ArtifactStore, BackupFileReader, FileSystemArtifactStore
from .compatibility import EngineVersion, POLICIES, DEFAULT_POLICY, ensure_compatible, get_policy
from .engine_process import MongodProcessControl, MongodProcessHandle
from .local_storage import LocalDataDirectory
from .manager import RestoreManager
from .orchestrator import RestoreOrchestrator

__all__ = [
    'RestoreManager',
    'RestoreOrchestrator',
    'ArtifactStore',
    'BackupFileReader',
    'FileSystemArtifactStore',
    'LocalDataDirectory',
    'MongodProcessControl',
    'MongodProcessHandle',
    'MongodAdminService',
    'EngineVersion',
    'POLICIES',
    'DEFAULT_POLICY',
    'ensure_compatible',
    'get_policy'
]
