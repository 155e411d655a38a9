"""Network-free building blocks: versions, type tags, encodings and URLs."""

from clickspec.core.features import FeatureFlags, ServerVersion, derive_features, parse_version
from clickspec.core.formatting import ClickHouseParameter, format_http_parameter, format_inline_parameter
from clickspec.core.settings import ClickHouseConnectionConfig, ConnectionSettings
from clickspec.core.substitution import substitute_parameters
from clickspec.core.types import ClickHouseType, infer_type_name, parse_type_name
from clickspec.core.uri import ClickHouseUriBuilder

__all__ = (
    "ClickHouseConnectionConfig",
    "ClickHouseParameter",
    "ClickHouseType",
    "ClickHouseUriBuilder",
    "ConnectionSettings",
    "FeatureFlags",
    "ServerVersion",
    "derive_features",
    "format_http_parameter",
    "format_inline_parameter",
    "infer_type_name",
    "parse_type_name",
    "parse_version",
    "substitute_parameters",
)
