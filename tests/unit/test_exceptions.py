from clickspec.exceptions import (
    ClickHouseError,
    ClickHouseServerError,
    ConnectionStateError,
    ImproperConfigurationError,
    InvalidServerVersionError,
    MissingParameterError,
    MissingTypeAnnotationError,
    ParameterError,
    ParameterFormatError,
    ProtocolMismatchError,
    QueryCancelledError,
    UnsupportedParameterTypeError,
    UnterminatedPlaceholderError,
)


def test_exception_hierarchy() -> None:
    """Driver exceptions share the ClickHouseError base."""
    assert issubclass(ImproperConfigurationError, ClickHouseError)
    assert issubclass(InvalidServerVersionError, ImproperConfigurationError)
    assert issubclass(InvalidServerVersionError, ValueError)
    assert issubclass(ProtocolMismatchError, ImproperConfigurationError)
    assert issubclass(QueryCancelledError, ClickHouseError)
    assert issubclass(ClickHouseServerError, ClickHouseError)

    for error in (
        UnsupportedParameterTypeError,
        ParameterFormatError,
        MissingParameterError,
        MissingTypeAnnotationError,
        UnterminatedPlaceholderError,
    ):
        assert issubclass(error, ParameterError)


def test_connection_state_error_is_a_programming_error() -> None:
    """Invalid-state access is not a driver failure."""
    assert issubclass(ConnectionStateError, RuntimeError)
    assert not issubclass(ConnectionStateError, ClickHouseError)


def test_exception_instantiation() -> None:
    exc = ImproperConfigurationError("Connection is not set")
    assert str(exc) == "Connection is not set"
    assert exc.detail == "Connection is not set"


def test_parameter_error_includes_sql() -> None:
    exc = MissingParameterError("Parameter y not found in parameters list", "SELECT {y:String}")
    assert exc.sql == "SELECT {y:String}"
    assert "Parameter y not found" in str(exc)
    assert "SQL: SELECT {y:String}" in str(exc)


def test_query_cancelled_default_message() -> None:
    assert str(QueryCancelledError()) == "The operation was cancelled."
    assert str(QueryCancelledError("stopped")) == "stopped"


def test_server_error_keeps_message_and_sql() -> None:
    """The server text is preserved verbatim and the error code is extracted."""
    exc = ClickHouseServerError("Code: 62. DB::Exception: Syntax error", "SELEC 1", status=400)

    assert exc.server_message == "Code: 62. DB::Exception: Syntax error"
    assert exc.sql == "SELEC 1"
    assert exc.status == 400
    assert exc.error_code == 62
    assert "Code: 62. DB::Exception: Syntax error" in str(exc)
    assert "SELEC 1" in str(exc)


def test_server_error_without_code() -> None:
    exc = ClickHouseServerError("Bad Gateway")
    assert exc.error_code is None
    assert exc.sql is None
    assert str(exc) == "Bad Gateway"


def test_exception_chaining() -> None:
    try:
        try:
            raise ValueError("bad")
        except ValueError as e:
            raise ParameterFormatError("Cannot convert 'x' to Int32") from e
    except ParameterFormatError as exc:
        assert isinstance(exc.__cause__, ValueError)
