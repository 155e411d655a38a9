"""Unit tests for server version parsing and feature negotiation."""

import pytest

from clickspec.core.features import FEATURE_THRESHOLDS, FeatureFlags, ServerVersion, derive_features, parse_version
from clickspec.exceptions import InvalidServerVersionError

ALL_FEATURES = (
    FeatureFlags.HTTP_PARAMETERS
    | FeatureFlags.DATETIME64
    | FeatureFlags.INLINE_QUERY
    | FeatureFlags.DECIMAL
    | FeatureFlags.IPV6
    | FeatureFlags.UUID_PARAMETERS
    | FeatureFlags.MAP
    | FeatureFlags.BOOL
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("22.3.1.1", ServerVersion(22, 3, 1, 1)),
        ("21.3", ServerVersion(21, 3, 0, 0)),
        ("23", ServerVersion(23, 0, 0, 0)),
        ("22.3.1.1\n", ServerVersion(22, 3, 1, 1)),
        ("  20.1.2.4  ", ServerVersion(20, 1, 2, 4)),
        ("22.x.1", ServerVersion(22, 0, 1, 0)),
        ("1.2.3.4.5", ServerVersion(1, 2, 3, 4)),
    ],
)
def test_parse_version(text: str, expected: ServerVersion) -> None:
    assert ServerVersion.parse(text) == expected
    assert parse_version(text) == expected


@pytest.mark.parametrize("text", ["", "   ", "0.1.2", "...", "garbage"])
def test_parse_version_rejects_invalid_text(text: str) -> None:
    with pytest.raises(InvalidServerVersionError):
        ServerVersion.parse(text)


def test_version_str() -> None:
    assert str(ServerVersion(22, 3, 1, 1)) == "22.3.1.1"
    assert str(ServerVersion.parse("21.3")) == "21.3.0.0"


def test_versions_compare_component_wise() -> None:
    assert ServerVersion(20, 10) > ServerVersion(20, 9, 99, 99)
    assert ServerVersion(21, 0, 0, 1) > ServerVersion(21, 0)


def test_recent_server_has_every_feature() -> None:
    assert derive_features(ServerVersion.parse("22.3.1.1")) == ALL_FEATURES


def test_old_server_has_no_features() -> None:
    assert derive_features(ServerVersion.parse("19.1.1.1")) == FeatureFlags.NONE


def test_threshold_is_exclusive() -> None:
    """A version equal to a threshold does not get the feature."""
    assert FeatureFlags.HTTP_PARAMETERS not in derive_features(ServerVersion(19, 11, 3, 11))
    assert FeatureFlags.HTTP_PARAMETERS in derive_features(ServerVersion(19, 11, 3, 12))

    assert FeatureFlags.INLINE_QUERY not in derive_features(ServerVersion(20, 5))
    assert FeatureFlags.INLINE_QUERY in derive_features(ServerVersion(20, 5, 0, 1))

    assert FeatureFlags.BOOL not in derive_features(ServerVersion(21, 12))
    assert FeatureFlags.BOOL in derive_features(ServerVersion(21, 12, 1))


def test_features_between_thresholds() -> None:
    features = derive_features(ServerVersion(20, 5))
    assert features == (
        FeatureFlags.HTTP_PARAMETERS | FeatureFlags.DATETIME64 | FeatureFlags.DECIMAL | FeatureFlags.IPV6
    )


def test_features_are_monotonic() -> None:
    """A newer version never loses a feature an older one had."""
    versions = sorted(
        {threshold for _, threshold in FEATURE_THRESHOLDS}
        | {ServerVersion(*threshold[:3], threshold.build + 1) for _, threshold in FEATURE_THRESHOLDS}
        | {ServerVersion(18), ServerVersion(25, 1)}
    )
    for older, newer in zip(versions, versions[1:]):
        older_features = derive_features(older)
        assert derive_features(newer) & older_features == older_features
