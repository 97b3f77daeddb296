"""
Type Algebra for intertypes

Every declared data shape is expressed in this closed, recursive grammar
of immutable type nodes. The codecs, the schema exporter and the source
generators all consume the same nodes unchanged.

ARCHITECTURAL RULE:
    Type nodes are structure only.
    They do not encode, validate or print themselves.
    Every backend dispatches over the constructors below and nothing else.
"""

from abc import ABC
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple


class InterType(ABC):
    """
    Base class for all IR type nodes.

    This class is intentionally empty. Subclasses are frozen dataclasses,
    so nodes compare structurally and can be used as dictionary keys.
    """
    pass


class PrimitiveKind(Enum):
    """
    Scalar primitives.

    The value is the name used in `$comment` of exported schemas and in
    the surface syntax.
    """

    UNIT = "Unit"
    I32 = "I32"
    U32 = "U32"
    I64 = "I64"
    U64 = "U64"
    F64 = "F64"
    BOOLEAN = "Boolean"
    STR = "Str"
    IDENT = "Ident"
    BINARY = "Binary"


@dataclass(frozen=True)
class Primitive(InterType):
    """
    A scalar type.

    Use the module constants (I32, STR, ...) rather than building these.
    """

    kind: PrimitiveKind


UNIT = Primitive(PrimitiveKind.UNIT)
I32 = Primitive(PrimitiveKind.I32)
U32 = Primitive(PrimitiveKind.U32)
I64 = Primitive(PrimitiveKind.I64)
U64 = Primitive(PrimitiveKind.U64)
F64 = Primitive(PrimitiveKind.F64)
BOOLEAN = Primitive(PrimitiveKind.BOOLEAN)
STR = Primitive(PrimitiveKind.STR)
IDENT = Primitive(PrimitiveKind.IDENT)
BINARY = Primitive(PrimitiveKind.BINARY)

# Inclusive bounds of each integer kind.
INTEGER_BOUNDS: Dict[PrimitiveKind, Tuple[int, int]] = {
    PrimitiveKind.I32: (-(2**31), 2**31 - 1),
    PrimitiveKind.U32: (0, 2**32 - 1),
    PrimitiveKind.I64: (-(2**63), 2**63 - 1),
    PrimitiveKind.U64: (0, 2**64 - 1),
}

# Integer kinds written as JSON strings of digits.
WIDE_INTEGERS = frozenset({PrimitiveKind.I64, PrimitiveKind.U64})


@dataclass(frozen=True)
class OptionalType(InterType):
    """A nullable wrapper: `null` or a value of `elem`."""

    elem: InterType


@dataclass(frozen=True)
class ListType(InterType):
    """An ordered sequence of `elem`."""

    elem: InterType


@dataclass(frozen=True)
class ObjectType(InterType):
    """A mapping from arbitrary string keys to `elem`, order preserving."""

    elem: InterType


@dataclass(frozen=True)
class MapType(InterType):
    """
    An order-preserving association with arbitrary key type.

    Written as a JSON array of {"key": ..., "value": ...} objects because
    JSON object keys can only be strings.
    """

    key: InterType
    value: InterType


@dataclass(frozen=True)
class Field:
    """A named, typed slot of a record or variant."""

    name: str
    type: InterType


@dataclass(frozen=True)
class Variant:
    """
    One alternative of a sum type.

    Properties:
        tag: Variant name, also the wire discriminator value
        fields: Field list (empty for a bare tag)
    """

    tag: str
    fields: Tuple[Field, ...] = ()


@dataclass(frozen=True)
class Record(InterType):
    """
    A fixed, ordered set of uniquely named fields.

    Tuples are records whose fields are named `_1` .. `_n`.
    """

    fields: Tuple[Field, ...]

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    @property
    def is_tuple(self) -> bool:
        return self.names == tuple(ordinal_name(i) for i in range(1, len(self.fields) + 1))


@dataclass(frozen=True)
class Sum(InterType):
    """A tagged union. Tags are unique within the sum."""

    variants: Tuple[Variant, ...]

    @property
    def tags(self) -> Tuple[str, ...]:
        return tuple(v.tag for v in self.variants)


@dataclass(frozen=True)
class Annot(InterType):
    """
    A documentation wrapper.

    Wire-format neutral: codecs look straight through it. Only the schema
    exporter uses the description.
    """

    description: str
    inner: InterType


@dataclass(frozen=True)
class TypeRef(InterType):
    """
    A reference to a named declaration.

    Examples:
        - TypeRef(("Point",))           local declaration
        - TypeRef(("simpleast", "Term")) declaration of an imported module

    IMPORTANT:
        The frontend checks that every reference resolves before the
        declaration holding it is accepted. A TypeRef in a finalized
        module never dangles.
    """

    path: Tuple[str, ...]

    @property
    def name(self) -> str:
        return self.path[-1]

    def __str__(self) -> str:
        return ".".join(self.path)


def ordinal_name(i: int) -> str:
    """Name given to the i-th (1-based) unnamed field."""
    return f"_{i}"


def tuple_type(*types: InterType) -> Record:
    """Build the record type of a tuple of `types`."""
    return Record(tuple(Field(ordinal_name(i), t) for i, t in enumerate(types, start=1)))


def strip_annotations(t: InterType) -> InterType:
    """Remove outer Annot wrappers."""
    while isinstance(t, Annot):
        t = t.inner
    return t
