"""
Mongo Operations Exceptions

This module defines custom exceptions for the mongo_ops package
to provide clear error handling and reporting.
"""

class MongoOpsError(Exception):
    """Base exception for all mongo_ops errors"""
    pass


class ConfigurationError(MongoOpsError):
    """Raised when configuration is invalid or missing"""
    pass


class EngineError(MongoOpsError):
    """Base exception for mongod process and administration failures"""
    pass


class StorageError(MongoOpsError):
    """Raised when backup storage or the local data directory cannot be accessed"""
    pass


class RestoreFailedError(MongoOpsError):
    """Raised when a restore operation fails"""
    pass


class OperationCancelledError(MongoOpsError):
    """Raised when an operation is cancelled before completion"""
    pass
