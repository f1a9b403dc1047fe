"""
Restore Parameters

Defines the parameter class for a binary restore request.
"""

from typing import Optional
from pydantic import BaseModel, Field, field_validator


class RestoreParams(BaseModel):
    """
    Parameters for restoring a binary backup into a mongod data directory.

    Attributes:
        backup_name: Name of the backup to restore, or ``"latest"``
        requesting_engine_version: Version of the mongod that will serve the
            restored data directory
        verify_checksums: Verify file checksums recorded in the manifest
        skip_ownership_fix: Leave file ownership untouched after the restore
        compatibility_policy: Override the configured compatibility policy

    Example:
        ```python
        params = RestoreParams(
            backup_name="stream_20240115T101500Z",
            requesting_engine_version="6.0.1"
        )
        ```
    """
    backup_name: str = Field(
        ...,
        min_length=1,
        description="Backup to restore (or 'latest')"
    )
    requesting_engine_version: str = Field(
        ...,
        min_length=1,
        description="Version of the mongod that will use the restored data"
    )
    verify_checksums: bool = Field(
        default=True,
        description="Verify file checksums recorded in the manifest"
    )
    skip_ownership_fix: bool = Field(
        default=False,
        description="Skip the final ownership/permission fix"
    )
    compatibility_policy: Optional[str] = Field(
        default=None,
        description="Compatibility policy name (uses configured policy if None)"
    )

    @field_validator("backup_name", "requesting_engine_version")
    @classmethod
    def strip_value(cls, v):
        """Reject whitespace-only values."""
        v = v.strip()
        if not v:
            raise ValueError("value cannot be empty")
        return v
