"""
Exception types raised while compiling declarations and converting values.

Compile time (frontend):
    - ParseError: surface text matches no recognized form.
    - NameResolutionError: a type reference names nothing declared or imported.
    - UnsupportedError: a recognized but unimplemented construct.

Run time (codecs):
    - ConversionError: a JSON value has the wrong shape for the expected type.
    - SchemaMismatchError: a record or table row has the wrong key set.
    - UnknownTagError: a sum discriminator names no declared variant.
    - DepthLimitError: nesting exceeds the configured maximum depth.

None of these are retried. They propagate straight to the caller.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

__all__ = [
    "InterTypeError",
    "ParseError",
    "NameResolutionError",
    "UnsupportedError",
    "ConversionError",
    "SchemaMismatchError",
    "UnknownTagError",
    "DepthLimitError",
    "ConfigError",
]


class InterTypeError(Exception):
    """Base class for all intertypes failures."""


class ParseError(InterTypeError, ValueError):
    """Raised when a declaration or type expression cannot be parsed."""

    def __init__(self, message: str, fragment: Optional[str] = None):
        if fragment is not None:
            message = f"{message}: {fragment!r}"
        super().__init__(message)
        self.fragment = fragment


class NameResolutionError(InterTypeError, LookupError):
    """Raised when a type reference cannot be resolved at definition time."""


class UnsupportedError(InterTypeError, NotImplementedError):
    """Raised for constructs that are recognized but not implemented."""


def _short(value: Any, limit: int = 80) -> str:
    text = repr(value)
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


class ConversionError(InterTypeError, ValueError):
    """
    Raised when a value does not have the shape the expected type requires.

    Properties:
        expected: The IR type (or a description of it) that was expected
        got: The offending raw value
    """

    def __init__(self, expected: Any, got: Any, reason: Optional[str] = None):
        message = f"expected {expected}, got {_short(got)}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.expected = expected
        self.got = got


class SchemaMismatchError(ConversionError):
    """Raised when an object's key set differs from the declared name set."""

    def __init__(self, expected: Any, got: Any, reason: Optional[str] = None):
        expected_names = sorted(expected) if isinstance(expected, (set, frozenset)) else expected
        got_names = sorted(got) if isinstance(got, (set, frozenset)) else got
        super().__init__(expected_names, got_names, reason or "key set mismatch")


class UnknownTagError(ConversionError):
    """Raised when a sum discriminator matches none of the declared tags."""

    def __init__(self, sum_name: str, tag: Any, tags: Iterable[str]):
        self.sum_name = sum_name
        self.tag = tag
        self.tags = tuple(tags)
        super().__init__(
            f"one of {list(self.tags)} for {sum_name}",
            tag,
            "unknown variant tag",
        )


class DepthLimitError(ConversionError):
    """Raised when nesting exceeds the configured maximum depth."""

    def __init__(self, limit: int, got: Any = None):
        self.limit = limit
        super().__init__(f"nesting depth <= {limit}", got, "maximum depth exceeded")


class ConfigError(InterTypeError, ValueError):
    """Raised when compiler configuration is invalid."""
