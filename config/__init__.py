"""
Configuration Module

This module provides centralized configuration management for mongo_ops:
- Backup storage location
- Special-mode mongod startup settings
- Restore pipeline policy (version compatibility, checksums, lock file)
- Logging settings
- Configuration validation and loading

Implements a flexible, environment-aware configuration system
with sensible defaults and comprehensive validation using Pydantic.
"""

from .settings import (
    MongoOpsSettings,
    load_settings,
    CompatibilityPolicyName,
    StorageSettings,
    MongodSettings,
    RestoreSettings,
    LoggingSettings
)

__all__ = [
    'MongoOpsSettings',
    'load_settings',
    'CompatibilityPolicyName',
    'StorageSettings',
    'MongodSettings',
    'RestoreSettings',
    'LoggingSettings'
]
