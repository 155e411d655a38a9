"""Server version parsing and capability negotiation.

The feature set is computed once from the version the server reports during the
connection handshake and never changes afterwards.
"""

from enum import Flag, auto
from typing import Final, NamedTuple

from clickspec.exceptions import InvalidServerVersionError

__all__ = ("FEATURE_THRESHOLDS", "FeatureFlags", "ServerVersion", "derive_features", "parse_version")

VERSION_COMPONENTS: Final[int] = 4


class ServerVersion(NamedTuple):
    """Four-part server version compared lexicographically."""

    major: int
    minor: int = 0
    patch: int = 0
    build: int = 0

    @classmethod
    def parse(cls, version_string: str) -> "ServerVersion":
        """Parse a dotted version string such as ``22.3.1.1``.

        Components that are not integers count as 0, missing components are 0.

        Args:
            version_string: Raw version text.

        Raises:
            InvalidServerVersionError: If the text is blank or the major version is 0.

        Returns:
            The parsed version.
        """
        if not version_string or not version_string.strip():
            msg = "Version string cannot be empty or whitespace."
            raise InvalidServerVersionError(msg)
        parts = [_to_int(part) for part in version_string.strip().split(".") if part]
        if not parts or parts[0] == 0:
            msg = f"Invalid version: {version_string}"
            raise InvalidServerVersionError(msg)
        return cls(*parts[:VERSION_COMPONENTS])

    def __str__(self) -> str:
        return ".".join(str(part) for part in self)


def _to_int(part: str) -> int:
    try:
        return int(part.strip())
    except ValueError:
        return 0


def parse_version(version_string: str) -> ServerVersion:
    """Shorthand for :meth:`ServerVersion.parse`."""
    return ServerVersion.parse(version_string)


class FeatureFlags(Flag):
    """Capabilities available on a particular server version."""

    NONE = 0
    HTTP_PARAMETERS = auto()
    DATETIME64 = auto()
    INLINE_QUERY = auto()
    DECIMAL = auto()
    IPV6 = auto()
    UUID_PARAMETERS = auto()
    MAP = auto()
    BOOL = auto()


# A flag is enabled when the server version is strictly greater than its threshold.
FEATURE_THRESHOLDS: Final["tuple[tuple[FeatureFlags, ServerVersion], ...]"] = (
    (FeatureFlags.HTTP_PARAMETERS, ServerVersion(19, 11, 3, 11)),
    (FeatureFlags.DATETIME64, ServerVersion(20, 1, 2, 4)),
    (FeatureFlags.INLINE_QUERY, ServerVersion(20, 5)),
    (FeatureFlags.DECIMAL, ServerVersion(20, 0)),
    (FeatureFlags.IPV6, ServerVersion(20, 0)),
    (FeatureFlags.UUID_PARAMETERS, ServerVersion(21, 0)),
    (FeatureFlags.MAP, ServerVersion(21, 1, 2)),
    (FeatureFlags.BOOL, ServerVersion(21, 12)),
)


def derive_features(version: ServerVersion) -> FeatureFlags:
    """Compute the capability set for a server version.

    Args:
        version: Parsed server version.

    Returns:
        Every flag whose threshold the version exceeds.
    """
    flags = FeatureFlags.NONE
    for flag, threshold in FEATURE_THRESHOLDS:
        if version > threshold:
            flags |= flag
    return flags
