"""Textual substitution of ``{name:Type}`` placeholders.

Used when the server cannot receive parameters through the URL. Brace characters
cannot be escaped: every ``{`` opens a placeholder, so a ``{`` without a closing
``}`` is rejected rather than copied, while a ``}`` that does not close a
placeholder is copied through unchanged.
"""

from collections.abc import Mapping

from clickspec.exceptions import MissingParameterError, MissingTypeAnnotationError, UnterminatedPlaceholderError

__all__ = ("substitute_parameters",)


def substitute_parameters(sql: str, literals: "Mapping[str, str]") -> str:
    """Replace every placeholder in ``sql`` with its literal.

    Args:
        sql: Statement text containing ``{name:Type}`` placeholders.
        literals: Already encoded SQL literals keyed by parameter name.

    Raises:
        MissingTypeAnnotationError: If a placeholder has no ``:type`` part.
        MissingParameterError: If a placeholder names an unknown parameter.
        UnterminatedPlaceholderError: If a ``{`` is never closed.

    Returns:
        The statement with all placeholders replaced.
    """
    start = sql.find("{")
    if start == -1:
        return sql

    parts: list[str] = []
    end = -1
    while start != -1:
        parts.append(sql[end + 1 : start])
        end = sql.find("}", start + 1)
        if end == -1:
            msg = f"Placeholder starting at position {start} is not terminated"
            raise UnterminatedPlaceholderError(msg, sql)
        placeholder = sql[start + 1 : end]
        name, delimiter, _ = placeholder.rpartition(":")
        if not delimiter:
            msg = f"Parameter {placeholder} doesn't have a data type"
            raise MissingTypeAnnotationError(msg, sql)
        if name not in literals:
            msg = f"Parameter {name} not found in parameters list"
            raise MissingParameterError(msg, sql)
        parts.append(literals[name])
        start = sql.find("{", end)

    parts.append(sql[end + 1 :])
    return "".join(parts)
