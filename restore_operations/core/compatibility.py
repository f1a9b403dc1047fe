"""
Version Compatibility

Decides whether a mongod build can consume a binary backup produced by a
given mongod version. The decision rule is a pluggable policy so deployments
can tighten or relax it without touching the restore pipeline.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Tuple, Union

from ..exceptions import IncompatibleVersionError, MalformedVersionError

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(
    r"^[vr]?(?P<major>\d+)\.(?P<minor>\d+)(?:\.(?P<patch>\d+))?(?:[-+][0-9A-Za-z.+-]*)?$"
)


@dataclass(frozen=True, order=True)
class EngineVersion:
    """
    Parsed mongod version.

    Accepts ``MAJOR.MINOR[.PATCH]`` with an optional leading ``v``/``r`` and
    an optional pre-release or build suffix (``6.0.1-rc0``, ``4.4.10-ent``).
    The suffix is kept in ``raw`` but ignored for comparisons.
    """
    major: int
    minor: int
    patch: int = 0
    raw: str = field(default="", compare=False)

    @classmethod
    def parse(cls, version: str) -> "EngineVersion":
        """
        Raises:
            MalformedVersionError: If ``version`` is not a semantic version
        """
        if not isinstance(version, str):
            raise MalformedVersionError(f"Version must be a string, got {type(version).__name__}",
                                        version=repr(version))
        match = _VERSION_PATTERN.match(version.strip())
        if not match:
            raise MalformedVersionError(f"Malformed version string: {version!r}", version=version)
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch") or 0),
            raw=version.strip()
        )

    @property
    def major_minor(self) -> Tuple[int, int]:
        return (self.major, self.minor)

    def __str__(self) -> str:
        return self.raw or f"{self.major}.{self.minor}.{self.patch}"


CompatibilityPolicy = Callable[[EngineVersion, EngineVersion], bool]


def same_major_not_newer(requesting: EngineVersion, backup: EngineVersion) -> bool:
    """Majors must match and the backup's major.minor must not be newer."""
    return requesting.major == backup.major and backup.major_minor <= requesting.major_minor


def same_major_minor(requesting: EngineVersion, backup: EngineVersion) -> bool:
    """Major and minor must both match."""
    return requesting.major_minor == backup.major_minor


def exact(requesting: EngineVersion, backup: EngineVersion) -> bool:
    """Major, minor and patch must all match."""
    return requesting == backup


POLICIES: Dict[str, CompatibilityPolicy] = {
    "same_major_not_newer": same_major_not_newer,
    "same_major_minor": same_major_minor,
    "exact": exact,
}

DEFAULT_POLICY = "same_major_not_newer"


def get_policy(name: str) -> CompatibilityPolicy:
    """
    Look up a shipped policy by name.

    Raises:
        KeyError: If no policy has that name
    """
    try:
        return POLICIES[name]
    except KeyError:
        raise KeyError(
            f"Unknown compatibility policy '{name}'. Available: {', '.join(sorted(POLICIES))}"
        ) from None


def ensure_compatible(
    requesting_version: str,
    backup_version: str,
    policy: Union[str, CompatibilityPolicy] = DEFAULT_POLICY
) -> None:
    """
    Check that ``requesting_version`` can restore a backup of ``backup_version``.

    Args:
        requesting_version: Version of the mongod that will serve the data
        backup_version: Version recorded in the backup sentinel
        policy: Policy name from ``POLICIES`` or a custom callable

    Raises:
        MalformedVersionError: If either version cannot be parsed
        IncompatibleVersionError: If the policy rejects the pair
    """
    policy_func = get_policy(policy) if isinstance(policy, str) else policy
    policy_name = policy if isinstance(policy, str) else getattr(policy, "__name__", repr(policy))

    requesting = EngineVersion.parse(requesting_version)
    backup = EngineVersion.parse(backup_version)

    if not policy_func(requesting, backup):
        raise IncompatibleVersionError(
            f"mongod {requesting} cannot restore a backup taken with mongod {backup}",
            requesting_version=str(requesting),
            backup_version=str(backup),
            policy=policy_name
        )

    logger.debug(f"Version check passed: requesting={requesting}, backup={backup}, policy={policy_name}")
