"""Request URL construction."""

from collections.abc import Mapping
from typing import Any, Optional

from yarl import URL

__all__ = ("PARAMETER_PREFIX", "ClickHouseUriBuilder")

PARAMETER_PREFIX = "param_"


class ClickHouseUriBuilder:
    """Collects the query string of a request against the HTTP interface.

    Values are percent-encoded by :mod:`yarl` when the URL is built.
    """

    __slots__ = ("_parameters", "base_url", "custom_settings", "database", "session_id", "sql", "use_compression")

    def __init__(
        self,
        base_url: URL,
        *,
        database: Optional[str] = None,
        session_id: Optional[str] = None,
        use_compression: bool = False,
        custom_settings: "Optional[Mapping[str, Any]]" = None,
        sql: Optional[str] = None,
    ) -> None:
        self.base_url = base_url
        self.database = database
        self.session_id = session_id
        self.use_compression = use_compression
        self.custom_settings = dict(custom_settings or {})
        self.sql = sql
        self._parameters: dict[str, str] = {}

    def add_query_parameter(self, name: str, value: str) -> None:
        """Add a native query parameter, sent as ``param_<name>``."""
        self._parameters[name] = value

    @property
    def query_parameters(self) -> "dict[str, str]":
        return dict(self._parameters)

    def build(self) -> URL:
        query: dict[str, str] = {}
        if self.use_compression:
            query["enable_http_compression"] = "1"
        if self.database:
            query["database"] = self.database
        if self.session_id:
            query["session_id"] = self.session_id
        if self.sql:
            query["query"] = self.sql
        for name, value in self.custom_settings.items():
            query[name] = _setting_text(value)
        for name, value in self._parameters.items():
            query[f"{PARAMETER_PREFIX}{name}"] = value
        return self.base_url.with_query(query)

    def __str__(self) -> str:
        return str(self.build())


def _setting_text(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)
