"""Exceptions raised by the Markus markdown core.

Exception Hierarchy
-------------------
- MarkusError (base exception)

  - SchemaError (invalid node or mark construction)
  - MarkdownInputError (input violates the sentinel constraint)
  - SerializationError (node type without a renderer)
  - ConfigError (invalid configuration file or value)

Malformed markup never raises: unmatched tags, sentinels and table tokens
degrade to literal or dropped text.

"""

from __future__ import annotations


class MarkusError(Exception):
    """Base exception class for all Markus-specific errors.

    Parameters
    ----------
    message : str
        Human-readable description of the error
    original_error : Exception, optional
        The original exception that caused this error, if applicable

    """

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class SchemaError(MarkusError):
    """Raised when a node or mark does not fit the document catalogue."""


class MarkdownInputError(MarkusError, ValueError):
    """Raised when markdown input contains reserved sentinel characters.

    Only raised under the ``"reject"`` sentinel policy; the default policy
    strips those characters instead.

    Parameters
    ----------
    message : str
        Human-readable description of the error
    positions : list of int, optional
        Offsets of the offending characters in the input

    """

    def __init__(self, message: str, positions: list[int] | None = None):
        super().__init__(message)
        self.positions = positions or []


class SerializationError(MarkusError):
    """Raised when the serializer meets a node type it cannot render."""


class ConfigError(MarkusError):
    """Raised for unreadable or invalid configuration."""
