"""
JSON codec for intertypes values.

Reads parsed JSON (the output of `json.loads`) into Python values of an
expected IR type, and streams Python values out as JSON text.

Wire rules:
    - I64 / U64 are written as strings of digits, never bare numbers,
      because double-precision JSON consumers lose precision above 2**53.
      They are *read* leniently from either a digit string or a bare
      integer. A bare integer produced elsewhere may already have been
      rounded before it reaches us; that is not detectable here.
    - I32 / U32 / F64 are bare numbers; integers are range-checked.
    - Binary is base64 text.
    - Map is an array of {"key": ..., "value": ...} objects, in order.
    - Object and Record are JSON objects, in order.

Declared structs and sums have no generic encoding; their readers and
writers come from the bindings table filled in by `intertypes.codegen`
(or by generated source), keyed by reference path.
"""

from __future__ import annotations

import base64
import binascii
import io
import json
import math
import re
import sys
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, TextIO, Tuple

from intertypes.algebra import (
    BINARY,
    BOOLEAN,
    F64,
    I64,
    INTEGER_BOUNDS,
    STR,
    UNIT,
    WIDE_INTEGERS,
    Annot,
    Field,
    InterType,
    ListType,
    MapType,
    ObjectType,
    OptionalType,
    Primitive,
    PrimitiveKind,
    Record,
    Sum,
    TypeRef,
    ordinal_name,
)
from intertypes.config import DEFAULT_CONFIG, CompilerConfig
from intertypes.errors import (
    ConversionError,
    DepthLimitError,
    NameResolutionError,
    SchemaMismatchError,
    UnsupportedError,
)

_DIGITS_RE = re.compile(r"-?[0-9]+")

MAP_ENTRY_NAMES = ("key", "value")


@dataclass(frozen=True)
class Binding:
    """
    Reader and writer of one declaration.

    Properties:
        read: (json value, depth) -> Python value
        write: (text sink, Python value, depth) -> None
        cls: Class whose instances `write` handles, if any. Lets values
            be encoded without naming their type.
    """

    read: Callable[[Any, int], Any]
    write: Callable[[TextIO, Any, int], None]
    cls: Optional[type] = None


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_range(t: Primitive, value: int) -> int:
    lo, hi = INTEGER_BOUNDS[t.kind]
    if not lo <= value <= hi:
        raise ConversionError(t, value, f"out of range for {t.kind.value}")
    return value


def _unique_object(pairs: Sequence[Tuple[str, Any]]) -> Dict[str, Any]:
    """`object_pairs_hook` rejecting objects that repeat a key."""
    result: Dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise SchemaMismatchError([k for k, _ in pairs], key, "duplicate key")
        result[key] = value
    return result


def check_keys(expected: Iterable[str], value: Mapping) -> None:
    """
    Require the keys of `value` to be exactly `expected`.

    Raises:
        SchemaMismatchError: On any missing or extra key
    """
    names = set(expected)
    got = set(value.keys())
    if got != names:
        missing = sorted(names - got)
        extra = sorted(got - names)
        raise SchemaMismatchError(names, got, f"missing {missing}, unexpected {extra}")


class JsonCodec:
    """
    Encoder/decoder over the IR type grammar.

    A codec is immutable once its bindings are in place; `bind` exists
    for the compile step that creates them and should not be called
    afterwards.

    Args:
        bindings: Declaration readers/writers keyed by reference path
        config: Compiler settings (max_depth)
    """

    def __init__(self, bindings: Optional[Mapping[Tuple[str, ...], Binding]] = None,
                 config: CompilerConfig = DEFAULT_CONFIG):
        self.config = config
        self.bindings: Dict[Tuple[str, ...], Binding] = {}
        self._by_class: Dict[type, Binding] = {}
        for path, binding in (bindings or {}).items():
            self.bind(path, binding)

    def bind(self, path: Sequence[str], binding: Binding) -> None:
        self.bindings[tuple(path)] = binding
        if binding.cls is not None:
            self._by_class.setdefault(binding.cls, binding)

    def binding(self, path: Sequence[str]) -> Binding:
        try:
            return self.bindings[tuple(path)]
        except KeyError:
            raise NameResolutionError(f"no reader/writer bound for {'.'.join(path)}") from None

    def binding_for(self, value: Any) -> Optional[Binding]:
        """The binding that writes instances of `type(value)`, if any."""
        return self._by_class.get(type(value))

    def _enter(self, depth: int, value: Any) -> None:
        if depth > self.config.max_depth:
            raise DepthLimitError(self.config.max_depth, value)

    # =========================================================================
    # READ
    # =========================================================================

    def read(self, t: InterType, value: Any, depth: int = 0) -> Any:
        """
        Convert a parsed JSON value into a Python value of type `t`.

        Raises:
            ConversionError: If `value` does not have the shape `t` needs
            SchemaMismatchError: If a record's keys differ from its fields
            DepthLimitError: If nesting exceeds config.max_depth
        """
        self._enter(depth, value)

        if isinstance(t, Primitive):
            return read_primitive(t, value)

        if isinstance(t, Annot):
            return self.read(t.inner, value, depth)

        if isinstance(t, OptionalType):
            if value is None:
                return None
            return self.read(t.elem, value, depth + 1)

        if isinstance(t, ListType):
            if not isinstance(value, list):
                raise ConversionError(t, value)
            return [self.read(t.elem, x, depth + 1) for x in value]

        if isinstance(t, ObjectType):
            if not isinstance(value, dict):
                raise ConversionError(t, value)
            return {k: self.read(t.elem, v, depth + 1) for k, v in value.items()}

        if isinstance(t, MapType):
            if not isinstance(value, list):
                raise ConversionError(t, value)
            result = OrderedDict()
            for entry in value:
                if not isinstance(entry, dict):
                    raise ConversionError(t, entry, "map entries are {key, value} objects")
                check_keys(MAP_ENTRY_NAMES, entry)
                key = self.read(t.key, entry["key"], depth + 1)
                item = self.read(t.value, entry["value"], depth + 1)
                try:
                    result[key] = item
                except TypeError as e:
                    raise ConversionError(t, entry, "map key is not hashable") from e
            return result

        if isinstance(t, Record):
            if not isinstance(value, dict):
                raise ConversionError(t, value)
            check_keys(t.names, value)
            values = [self.read(f.type, value[f.name], depth + 1) for f in t.fields]
            if t.is_tuple:
                return tuple(values)
            return dict(zip(t.names, values))

        if isinstance(t, Sum):
            raise UnsupportedError("anonymous sum types have no reader; declare them with `sum`")

        if isinstance(t, TypeRef):
            return self.binding(t.path).read(value, depth + 1)

        raise TypeError(f"Unsupported type node: {type(t)}")

    def decode(self, text: str, t: InterType) -> Any:
        """Parse JSON text and read it as type `t`."""
        try:
            value = json.loads(text, object_pairs_hook=_unique_object)
        except json.JSONDecodeError as e:
            raise ConversionError(t, text, f"invalid JSON: {e}") from e
        return self.read(t, value)

    # =========================================================================
    # WRITE
    # =========================================================================

    def write(self, out: TextIO, value: Any, t: Optional[InterType] = None, depth: int = 0) -> None:
        """
        Write `value` as JSON text of type `t` to `out`.

        Without `t`, the type is inferred from the Python value (see
        `infer_type`); generated instances use their own declaration.
        """
        self._enter(depth, value)

        if t is None:
            self._write_untyped(out, value, depth)
            return

        if isinstance(t, Primitive):
            out.write(write_primitive(t, value))

        elif isinstance(t, Annot):
            self.write(out, value, t.inner, depth)

        elif isinstance(t, OptionalType):
            if value is None:
                out.write("null")
            else:
                self.write(out, value, t.elem, depth + 1)

        elif isinstance(t, ListType):
            if not isinstance(value, (list, tuple)):
                raise ConversionError(t, value)
            out.write("[")
            for i, x in enumerate(value):
                if i:
                    out.write(",")
                self.write(out, x, t.elem, depth + 1)
            out.write("]")

        elif isinstance(t, ObjectType):
            if not isinstance(value, Mapping):
                raise ConversionError(t, value)
            for k in value:
                if not isinstance(k, str):
                    raise ConversionError(t, value, "object keys must be strings")
            self.write_fields(out, ((k, v, t.elem) for k, v in value.items()), depth + 1)

        elif isinstance(t, MapType):
            if not isinstance(value, Mapping):
                raise ConversionError(t, value)
            out.write("[")
            for i, (k, v) in enumerate(value.items()):
                if i:
                    out.write(",")
                self.write_fields(out, (("key", k, t.key), ("value", v, t.value)), depth + 1)
            out.write("]")

        elif isinstance(t, Record):
            values = record_values(t, value)
            self.write_fields(
                out, ((f.name, v, f.type) for f, v in zip(t.fields, values)), depth + 1
            )

        elif isinstance(t, Sum):
            raise UnsupportedError("anonymous sum types have no writer; declare them with `sum`")

        elif isinstance(t, TypeRef):
            self.binding(t.path).write(out, value, depth + 1)

        else:
            raise TypeError(f"Unsupported type node: {type(t)}")

    def write_fields(self, out: TextIO, items: Iterable[Tuple[str, Any, Optional[InterType]]], depth: int) -> None:
        """Write a JSON object from (name, value, type) triples, in order."""
        out.write("{")
        for i, (name, value, t) in enumerate(items):
            if i:
                out.write(",")
            out.write(json.dumps(name))
            out.write(":")
            self.write(out, value, t, depth)
        out.write("}")

    def _write_untyped(self, out: TextIO, value: Any, depth: int) -> None:
        binding = self.binding_for(value)
        if binding is not None:
            binding.write(out, value, depth + 1)
            return

        # Lazy: the table codec imports this module.
        from intertypes.tables import TableStore, write_tables
        if isinstance(value, TableStore):
            write_tables(out, value, self, depth + 1)
            return

        t = infer_type(value)
        if isinstance(t, Primitive):
            out.write(write_primitive(t, value))
        elif isinstance(t, MapType):
            out.write("[")
            for i, (k, v) in enumerate(value.items()):
                if i:
                    out.write(",")
                self.write_fields(out, (("key", k, None), ("value", v, None)), depth + 1)
            out.write("]")
        elif isinstance(t, ObjectType):
            self.write_fields(out, ((k, v, None) for k, v in value.items()), depth + 1)
        elif isinstance(t, ListType):
            out.write("[")
            for i, x in enumerate(value):
                if i:
                    out.write(",")
                self.write(out, x, None, depth + 1)
            out.write("]")
        else:
            names = t.names
            self.write_fields(out, zip(names, value, [None] * len(names)), depth + 1)

    def encode(self, value: Any, t: Optional[InterType] = None) -> str:
        """Return the JSON text of `value`."""
        out = io.StringIO()
        self.write(out, value, t)
        return out.getvalue()


# Placeholder element type for untyped containers; never read back.
_ANY = UNIT


def infer_type(value: Any) -> InterType:
    """
    IR type used to write `value` when no type is given.

    Python ints are treated as I64, so they are written as strings; pass
    an explicit type to get bare 32-bit numbers.

    Raises:
        ConversionError: For values with no natural encoding
    """
    if value is None:
        return UNIT
    if isinstance(value, bool):
        return BOOLEAN
    if isinstance(value, int):
        return I64
    if isinstance(value, float):
        return F64
    if isinstance(value, str):
        return STR
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BINARY
    if isinstance(value, OrderedDict):
        return MapType(_ANY, _ANY)
    if isinstance(value, Mapping):
        if all(isinstance(k, str) for k in value):
            return ObjectType(_ANY)
        return MapType(_ANY, _ANY)
    if isinstance(value, list):
        return ListType(_ANY)
    if isinstance(value, tuple):
        names = getattr(value, "_fields", None)
        if names is None:
            names = [ordinal_name(i) for i in range(1, len(value) + 1)]
        return Record(tuple(Field(name, _ANY) for name in names))
    raise ConversionError("a value with a known encoding", value, f"no encoding for {type(value).__name__}")


def record_values(t: Record, value: Any) -> list:
    """
    Field values of `value` in the field order of `t`.

    Accepts plain tuples (positionally), mappings (by key; the key set must
    equal the field names) and any object exposing the fields as attributes
    (named tuples, generated classes).
    """
    if isinstance(value, tuple) and not hasattr(value, "_fields"):
        if len(value) != len(t.fields):
            raise ConversionError(t, value, f"expected {len(t.fields)} elements")
        return list(value)
    if isinstance(value, Mapping):
        check_keys(t.names, value)
        return [value[name] for name in t.names]
    try:
        return [getattr(value, name) for name in t.names]
    except AttributeError as e:
        raise ConversionError(t, value, str(e)) from e


def read_primitive(t: Primitive, value: Any) -> Any:
    """Read a scalar of kind `t.kind` from a parsed JSON value."""
    kind = t.kind

    if kind == PrimitiveKind.UNIT:
        if value is not None:
            raise ConversionError(t, value)
        return None

    if kind in WIDE_INTEGERS:
        if isinstance(value, str) and _DIGITS_RE.fullmatch(value):
            return _check_range(t, int(value))
        if _is_int(value):
            return _check_range(t, value)
        raise ConversionError(t, value)

    if kind in INTEGER_BOUNDS:
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if not _is_int(value):
            raise ConversionError(t, value)
        return _check_range(t, value)

    if kind == PrimitiveKind.F64:
        if not _is_number(value):
            raise ConversionError(t, value)
        try:
            return float(value)
        except OverflowError as e:
            raise ConversionError(t, value, "out of range for F64") from e

    if kind == PrimitiveKind.BOOLEAN:
        if not isinstance(value, bool):
            raise ConversionError(t, value)
        return value

    if kind == PrimitiveKind.STR:
        if not isinstance(value, str):
            raise ConversionError(t, value)
        return value

    if kind == PrimitiveKind.IDENT:
        if not isinstance(value, str):
            raise ConversionError(t, value)
        return sys.intern(value)

    if kind == PrimitiveKind.BINARY:
        if not isinstance(value, str):
            raise ConversionError(t, value)
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConversionError(t, value, "invalid base64") from e

    raise TypeError(f"Unsupported primitive: {kind}")


def write_primitive(t: Primitive, value: Any) -> str:
    """JSON text of a scalar of kind `t.kind`."""
    kind = t.kind

    if kind == PrimitiveKind.UNIT:
        if value is not None:
            raise ConversionError(t, value)
        return "null"

    if kind in INTEGER_BOUNDS:
        if not _is_int(value):
            raise ConversionError(t, value)
        _check_range(t, value)
        if kind in WIDE_INTEGERS:
            return f'"{value:d}"'
        return f"{value:d}"

    if kind == PrimitiveKind.F64:
        if not _is_number(value):
            raise ConversionError(t, value)
        try:
            value = float(value)
        except OverflowError as e:
            raise ConversionError(t, value, "out of range for F64") from e
        if not math.isfinite(value):
            raise ConversionError(t, value, "JSON has no representation for non-finite numbers")
        return repr(value)

    if kind == PrimitiveKind.BOOLEAN:
        if not isinstance(value, bool):
            raise ConversionError(t, value)
        return "true" if value else "false"

    if kind in (PrimitiveKind.STR, PrimitiveKind.IDENT):
        if not isinstance(value, str):
            raise ConversionError(t, value)
        return json.dumps(value)

    if kind == PrimitiveKind.BINARY:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise ConversionError(t, value)
        return '"' + base64.b64encode(bytes(value)).decode("ascii") + '"'

    raise TypeError(f"Unsupported primitive: {kind}")


DEFAULT_CODEC = JsonCodec()


def jsonread(text: str, t: InterType) -> Any:
    """Decode JSON text as type `t` with the default codec."""
    return DEFAULT_CODEC.decode(text, t)


def jsonwrite(value: Any, t: Optional[InterType] = None) -> str:
    """Encode `value` (as type `t`, if given) with the default codec."""
    return DEFAULT_CODEC.encode(value, t)


__all__ = [
    "Binding",
    "JsonCodec",
    "DEFAULT_CODEC",
    "check_keys",
    "infer_type",
    "record_values",
    "read_primitive",
    "write_primitive",
    "jsonread",
    "jsonwrite",
    "MAP_ENTRY_NAMES",
]
