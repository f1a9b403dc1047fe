"""Tests for version parsing and compatibility policies."""

import pytest

from restore_operations.core.compatibility import (
    EngineVersion,
    POLICIES,
    ensure_compatible,
    get_policy
)
from restore_operations.exceptions import IncompatibleVersionError, MalformedVersionError


@pytest.mark.parametrize("raw, expected", [
    ("6.0.1", (6, 0, 1)),
    ("4.4", (4, 4, 0)),
    ("v5.0.14", (5, 0, 14)),
    ("r4.2.8", (4, 2, 8)),
    ("7.0.2-rc1", (7, 0, 2)),
    ("4.4.10+ent", (4, 4, 10)),
    (" 6.0.1 ", (6, 0, 1)),
])
def test_parse(raw, expected):
    version = EngineVersion.parse(raw)
    assert (version.major, version.minor, version.patch) == expected


@pytest.mark.parametrize("raw", ["", "6", "six.zero", "6.0.1.2", "6..1", "latest"])
def test_parse_rejects_malformed(raw):
    with pytest.raises(MalformedVersionError):
        EngineVersion.parse(raw)


def test_suffix_is_ignored_for_ordering():
    assert EngineVersion.parse("6.0.1-rc0") == EngineVersion.parse("6.0.1")
    assert EngineVersion.parse("6.0.1") < EngineVersion.parse("6.0.2")


@pytest.mark.parametrize("policy", sorted(POLICIES))
@pytest.mark.parametrize("version", ["3.6.23", "4.4.0", "6.0.1", "7.0.2-rc1"])
def test_identical_versions_always_compatible(policy, version):
    ensure_compatible(version, version, policy)


@pytest.mark.parametrize("policy", sorted(POLICIES))
@pytest.mark.parametrize("requesting, backup", [
    ("5.0.0", "6.0.1"),
    ("6.0.1", "5.0.0"),
    ("7.0.0", "6.0.14"),
    ("4.4.0", "3.6.0"),
])
def test_major_mismatch_always_incompatible(policy, requesting, backup):
    with pytest.raises(IncompatibleVersionError) as exc_info:
        ensure_compatible(requesting, backup, policy)

    error = exc_info.value
    assert error.policy == policy
    assert error.stage == "VALIDATE_PRECONDITIONS"


def test_default_policy_allows_older_minor_and_any_patch():
    ensure_compatible("6.1.0", "6.0.5")
    ensure_compatible("6.0.1", "6.0.9")


def test_default_policy_rejects_newer_minor():
    with pytest.raises(IncompatibleVersionError) as exc_info:
        ensure_compatible("6.0.1", "6.1.0")

    assert exc_info.value.requesting_version == "6.0.1"
    assert exc_info.value.backup_version == "6.1.0"


def test_same_major_minor_policy():
    ensure_compatible("6.0.9", "6.0.1", "same_major_minor")
    with pytest.raises(IncompatibleVersionError):
        ensure_compatible("6.1.0", "6.0.5", "same_major_minor")


def test_exact_policy():
    with pytest.raises(IncompatibleVersionError):
        ensure_compatible("6.0.2", "6.0.1", "exact")


def test_custom_policy_callable():
    def never(requesting, backup):
        return False

    with pytest.raises(IncompatibleVersionError) as exc_info:
        ensure_compatible("6.0.1", "6.0.1", never)

    assert exc_info.value.policy == "never"


def test_malformed_backup_version():
    with pytest.raises(MalformedVersionError) as exc_info:
        ensure_compatible("6.0.1", "garbage")

    assert exc_info.value.version == "garbage"


def test_unknown_policy_name():
    with pytest.raises(KeyError, match="Available"):
        get_policy("loose")
