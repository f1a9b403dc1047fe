"""Tests for restore models and parameters."""

import pytest
from bson.timestamp import Timestamp as BsonTimestamp
from pydantic import ValidationError

from restore_operations.exceptions import ManifestLayoutError
from restore_operations.models import (
    BackupFileMeta,
    BackupFilesMetadata,
    CompressionType,
    EngineVariant,
    RestoreParams,
    RestoreProgress,
    RestoreStage,
    Sentinel,
    Timestamp
)


def test_timestamp_accepts_both_spellings():
    assert Timestamp(TS=10, Inc=3) == Timestamp(ts=10, inc=3)


def test_timestamp_to_bson():
    assert Timestamp(ts=10, inc=4).to_bson() == BsonTimestamp(10, 4)


def test_timestamp_is_immutable():
    ts = Timestamp(ts=1, inc=1)
    with pytest.raises(ValidationError):
        ts.ts = 2


def test_sentinel_requires_version_and_last_ts():
    with pytest.raises(ValidationError):
        Sentinel.model_validate({"BackupLastTS": {"TS": 1, "Inc": 0}})
    with pytest.raises(ValidationError):
        Sentinel.model_validate({"EngineVersion": "6.0.1"})


def test_sentinel_from_camel_case():
    sentinel = Sentinel.model_validate({
        "BackupName": "stream_1",
        "EngineVersion": "6.0.1",
        "BackupLastTS": {"TS": 1705313700, "Inc": 7},
        "UncompressedSize": 2048,
        "UserData": {"ticket": "OPS-1"},
        "Permanent": True,
    })

    assert sentinel.backup_last_ts == Timestamp(ts=1705313700, inc=7)
    assert sentinel.uncompressed_size == 2048
    assert sentinel.user_data == {"ticket": "OPS-1"}
    assert sentinel.permanent


@pytest.mark.parametrize("path", ["/etc/passwd", "../escape", "journal/../../x", "", "."])
def test_file_meta_rejects_unsafe_paths(path):
    with pytest.raises(ValidationError):
        BackupFileMeta(path=path)


def test_file_meta_normalizes_and_reports_parent():
    meta = BackupFileMeta(Path="journal\\WiredTigerLog.0000000001", Size=12)

    assert meta.path == "journal/WiredTigerLog.0000000001"
    assert meta.parent == "journal"
    assert BackupFileMeta(path="WiredTiger").parent == ""


def test_compression_extension():
    assert CompressionType.NONE.extension == ""
    assert CompressionType.GZIP.extension == ".gz"
    assert CompressionType.ZSTD.extension == ".zst"


def test_manifest_layout_accepts_root_and_listed_directories():
    manifest = BackupFilesMetadata(
        directories=["journal", "diagnostic.data"],
        files=[BackupFileMeta(path="WiredTiger", size=1), BackupFileMeta(path="journal/log1", size=2)]
    )

    manifest.validate_layout()
    assert manifest.total_bytes == 3


def test_manifest_layout_rejects_unlisted_parent():
    manifest = BackupFilesMetadata(files=[BackupFileMeta(path="journal/log1")])

    with pytest.raises(ManifestLayoutError) as exc_info:
        manifest.validate_layout()

    assert exc_info.value.invalid_paths == ["journal/log1"]


def test_manifest_layout_rejects_unsafe_directory():
    with pytest.raises(ManifestLayoutError):
        BackupFilesMetadata(directories=["../outside"]).validate_layout()


def test_stage_pipeline_order():
    assert RestoreStage.pipeline() == [
        RestoreStage.FETCH_METADATA,
        RestoreStage.VALIDATE_PRECONDITIONS,
        RestoreStage.PREPARE_TARGET_DIRECTORY,
        RestoreStage.TRANSFER_FILES,
        RestoreStage.FIX_SYSTEM_DATA,
        RestoreStage.RECOVER_OPLOG_STANDALONE,
        RestoreStage.FIX_OWNERSHIP,
    ]


def test_engine_variant_parameters():
    assert EngineVariant.DISABLE_SESSION_CACHE_REFRESH.set_parameters == {
        "disableLogicalSessionCacheRefresh": "true"
    }
    assert EngineVariant.RECOVER_OPLOG_STANDALONE.set_parameters["recoverFromOplogAsStandalone"] == "true"


def test_restore_params_validation():
    params = RestoreParams(backup_name=" latest ", requesting_engine_version="6.0.1")
    assert params.backup_name == "latest"

    with pytest.raises(ValidationError):
        RestoreParams(backup_name="   ", requesting_engine_version="6.0.1")


@pytest.mark.parametrize("seconds, expected", [(None, None), (42, "42s"), (125, "2m 5s"), (7320, "2h 2m")])
def test_progress_eta_formatting(seconds, expected):
    assert RestoreProgress(backup_name="b", estimated_remaining_time_seconds=seconds).formatted_eta == expected
