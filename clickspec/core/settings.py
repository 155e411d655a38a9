"""Connection settings bundle and its connection-string form."""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any, Final, Optional

from typing_extensions import NotRequired, Self, TypedDict

from clickspec.exceptions import ImproperConfigurationError

__all__ = (
    "CUSTOM_SETTING_PREFIX",
    "DEFAULT_PORT",
    "DEFAULT_TIMEOUT",
    "ClickHouseConnectionConfig",
    "ConnectionSettings",
)

CUSTOM_SETTING_PREFIX: Final[str] = "set_"
DEFAULT_PORT: Final[int] = 8123
DEFAULT_TIMEOUT: Final[float] = 120.0

_TRUE_VALUES: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})

# connection-string key -> settings attribute
_KEY_ALIASES: Final[dict[str, str]] = {
    "protocol": "protocol",
    "host": "host",
    "port": "port",
    "database": "database",
    "username": "username",
    "user": "username",
    "password": "password",
    "compression": "compression",
    "usesession": "use_session",
    "sessionid": "session_id",
    "timeout": "timeout",
}
_CANONICAL_KEYS: Final[dict[str, str]] = {
    "protocol": "Protocol",
    "host": "Host",
    "port": "Port",
    "database": "Database",
    "username": "Username",
    "password": "Password",
    "compression": "Compression",
    "use_session": "UseSession",
    "session_id": "SessionId",
    "timeout": "Timeout",
}


class ClickHouseConnectionConfig(TypedDict, total=False):
    """TypedDict for ClickHouse HTTP connection parameters."""

    protocol: NotRequired[str]
    host: NotRequired[str]
    port: NotRequired[int]
    database: NotRequired[str]
    username: NotRequired[str]
    password: NotRequired[str]
    compression: NotRequired[bool]
    use_session: NotRequired[bool]
    session_id: NotRequired[str]
    timeout: NotRequired[float]
    custom_settings: NotRequired[dict[str, Any]]


@dataclass
class ConnectionSettings:
    """Everything a connection needs to reach and authenticate against a server."""

    host: str = "localhost"
    port: int = DEFAULT_PORT
    protocol: str = "http"
    database: str = "default"
    username: str = "default"
    password: str = ""
    compression: bool = True
    use_session: bool = False
    session_id: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    custom_settings: "dict[str, Any]" = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.protocol not in {"http", "https"}:
            msg = f"Unsupported protocol {self.protocol!r}, expected 'http' or 'https'"
            raise ImproperConfigurationError(msg)
        if not 0 < self.port < 65536:
            msg = f"Invalid port {self.port}"
            raise ImproperConfigurationError(msg)
        if self.timeout <= 0:
            msg = f"Timeout must be positive, got {self.timeout}"
            raise ImproperConfigurationError(msg)

    @classmethod
    def from_mapping(cls, config: "Mapping[str, Any]") -> Self:
        """Build settings from a :class:`ClickHouseConnectionConfig`-shaped mapping.

        Unknown keys starting with ``set_`` become custom settings; any other unknown
        key is rejected.
        """
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        custom_settings: dict[str, Any] = dict(config.get("custom_settings") or {})
        for key, value in config.items():
            if key == "custom_settings" or value is None:
                continue
            if key in known:
                values[key] = value
            elif key.startswith(CUSTOM_SETTING_PREFIX):
                custom_settings[key[len(CUSTOM_SETTING_PREFIX) :]] = value
            else:
                msg = f"Unknown connection parameter {key!r}"
                raise ImproperConfigurationError(msg)
        return cls(**values, custom_settings=custom_settings)

    def to_mapping(self) -> "ClickHouseConnectionConfig":
        config: ClickHouseConnectionConfig = {
            "protocol": self.protocol,
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "username": self.username,
            "password": self.password,
            "compression": self.compression,
            "use_session": self.use_session,
            "timeout": self.timeout,
            "custom_settings": dict(self.custom_settings),
        }
        if self.session_id is not None:
            config["session_id"] = self.session_id
        return config

    @classmethod
    def from_connection_string(cls, connection_string: str) -> Self:
        """Parse ``Host=localhost;Port=8123;Compression=true;set_max_threads=4``.

        Keys are case-insensitive. Values containing ``;`` may be double-quoted.
        """
        values: dict[str, Any] = {}
        custom_settings: dict[str, Any] = {}
        for key, value in _split_connection_string(connection_string):
            if key.lower().startswith(CUSTOM_SETTING_PREFIX):
                custom_settings[key[len(CUSTOM_SETTING_PREFIX) :]] = value
                continue
            attribute = _KEY_ALIASES.get(key.lower().replace("_", ""))
            if attribute is None:
                msg = f"Unknown connection string key {key!r}"
                raise ImproperConfigurationError(msg)
            values[attribute] = _coerce(attribute, value)
        return cls(**values, custom_settings=custom_settings)

    def to_connection_string(self) -> str:
        pairs: list[tuple[str, Any]] = [
            (_CANONICAL_KEYS[name], getattr(self, name))
            for name in _CANONICAL_KEYS
            if getattr(self, name) is not None
        ]
        pairs.extend((f"{CUSTOM_SETTING_PREFIX}{name}", value) for name, value in self.custom_settings.items())
        return ";".join(f"{key}={_quote(_text(value))}" for key, value in pairs)


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _quote(value: str) -> str:
    if any(char in value for char in ';="') or value != value.strip():
        return '"' + value.replace('"', '""') + '"'
    return value


def _coerce(attribute: str, value: str) -> Any:
    if attribute == "port":
        try:
            return int(value)
        except ValueError as e:
            msg = f"Invalid port {value!r}"
            raise ImproperConfigurationError(msg) from e
    if attribute == "timeout":
        try:
            return float(value)
        except ValueError as e:
            msg = f"Invalid timeout {value!r}"
            raise ImproperConfigurationError(msg) from e
    if attribute in {"compression", "use_session"}:
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        msg = f"Invalid boolean {value!r} for {attribute}"
        raise ImproperConfigurationError(msg)
    return value


def _split_connection_string(connection_string: str) -> "list[tuple[str, str]]":
    pairs: list[tuple[str, str]] = []
    index = 0
    length = len(connection_string)
    while index < length:
        separator = connection_string.find("=", index)
        if separator == -1:
            if connection_string[index:].strip():
                msg = f"Malformed connection string segment {connection_string[index:]!r}"
                raise ImproperConfigurationError(msg)
            break
        key = connection_string[index:separator].strip().lstrip(";").strip()
        index = separator + 1
        while index < length and connection_string[index] == " ":
            index += 1
        if index < length and connection_string[index] == '"':
            chars: list[str] = []
            index += 1
            while True:
                if index >= length:
                    msg = f"Unterminated quoted value for {key!r}"
                    raise ImproperConfigurationError(msg)
                if connection_string[index] == '"':
                    if index + 1 < length and connection_string[index + 1] == '"':
                        chars.append('"')
                        index += 2
                        continue
                    index += 1
                    break
                chars.append(connection_string[index])
                index += 1
            value = "".join(chars)
            end = connection_string.find(";", index)
            index = length if end == -1 else end + 1
        else:
            end = connection_string.find(";", index)
            if end == -1:
                end = length
            value = connection_string[index:end].strip()
            index = end + 1
        if not key:
            msg = "Connection string contains an empty key"
            raise ImproperConfigurationError(msg)
        pairs.append((key, value))
    return pairs
