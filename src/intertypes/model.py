"""
Declarations and Modules

Defines the named constructs a source unit declares and the containers
holding them:
    - Declarations (Alias, Struct, SumType, VariantOf, TableSchema)
    - TableSpec (object kinds, foreign keys, attribute types, attributes)
    - Module (finalized, read-only)
    - ModuleBuilder (the only way to make a Module)

ARCHITECTURAL RULE:
    A Module is built once and never changes afterwards.
    All mutation happens inside a ModuleBuilder, which resolves names
    against an arena of declaration slots. A name is registered the moment
    its slot is reserved, so a declaration may refer to itself (or to a
    later slot reserved ahead of it) while its body is being built.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from intertypes.algebra import Field, InterType, TypeRef, Variant, strip_annotations
from intertypes.errors import NameResolutionError, ParseError, UnsupportedError


class Declaration:
    """Base class for module-level declarations."""
    pass


@dataclass(frozen=True)
class Alias(Declaration):
    """`alias Name = Type`: another name for a type, same wire format."""

    type: InterType


@dataclass(frozen=True)
class Struct(Declaration):
    """A named record type."""

    fields: Tuple[Field, ...]


@dataclass(frozen=True)
class SumType(Declaration):
    """A named tagged union."""

    variants: Tuple[Variant, ...]

    @property
    def tags(self) -> Tuple[str, ...]:
        return tuple(v.tag for v in self.variants)

    def variant(self, tag: str) -> Optional[Variant]:
        for v in self.variants:
            if v.tag == tag:
                return v
        return None


@dataclass(frozen=True)
class VariantOf(Declaration):
    """
    Back-reference from a variant tag to the sum that owns it.

    Recorded so that schema `$ref`s and generated dispatch can find the
    variant's field list by tag name alone.
    """

    parent: str


@dataclass(frozen=True)
class Hom:
    """A foreign key `name` from rows of `dom` to rows of `codom`."""

    name: str
    dom: str
    codom: str


@dataclass(frozen=True)
class AttrType:
    """An attribute type: a named id pool with a declared native type."""

    name: str
    type: InterType


@dataclass(frozen=True)
class Attr:
    """A per-row attribute column `name` on `dom` holding `codom` values."""

    name: str
    dom: str
    codom: str


@dataclass(frozen=True)
class TableSpec:
    """
    Schema of a table-structured data model.

    Properties:
        objects: Object kinds (tables), in declaration order
        homs: Foreign keys between object kinds
        attr_types: Attribute types with their native IR type
        attrs: Attribute columns, each typed by an attribute type

    INVARIANTS:
        - All names (kinds, foreign keys, attribute types, attributes) are
          distinct, so a column is identified by its name alone
        - Every hom and attr domain is an object kind
        - Every hom codomain is an object kind
        - Every attr codomain is an attribute type
    """

    objects: Tuple[str, ...] = ()
    homs: Tuple[Hom, ...] = ()
    attr_types: Tuple[AttrType, ...] = ()
    attrs: Tuple[Attr, ...] = ()

    def __post_init__(self):
        names = list(self.objects) + [h.name for h in self.homs]
        names += [a.name for a in self.attr_types] + [a.name for a in self.attrs]
        seen = set()
        for name in names:
            if name in seen:
                raise ParseError("duplicate name in table schema", name)
            seen.add(name)

        kinds = set(self.objects)
        pools = {a.name for a in self.attr_types}
        for h in self.homs:
            for end in (h.dom, h.codom):
                if end not in kinds:
                    raise NameResolutionError(f"foreign key {h.name} refers to unknown object kind {end}")
        for a in self.attrs:
            if a.dom not in kinds:
                raise NameResolutionError(f"attribute {a.name} refers to unknown object kind {a.dom}")
            if a.codom not in pools:
                raise NameResolutionError(f"attribute {a.name} refers to unknown attribute type {a.codom}")

    def homs_from(self, ob: str) -> List[Hom]:
        return [h for h in self.homs if h.dom == ob]

    def attrs_from(self, ob: str) -> List[Tuple[str, InterType]]:
        """Attributes of `ob` as (name, native type) pairs."""
        return [(a.name, self.attr_type(a.codom).type) for a in self.attrs if a.dom == ob]

    def attr_type(self, name: str) -> AttrType:
        for a in self.attr_types:
            if a.name == name:
                return a
        raise KeyError(name)

    def hom(self, name: str) -> Optional[Hom]:
        for h in self.homs:
            if h.name == name:
                return h
        return None


@dataclass(frozen=True)
class TableSchema(Declaration):
    """A named table schema."""

    spec: TableSpec


DeclarationPath = Union[str, Sequence[str]]


@dataclass(frozen=True, eq=False)
class Module:
    """
    A finalized source unit.

    Properties:
        name: Module name
        imports: Imported modules by name, in declaration order
        declarations: Declarations by name, in declaration order

    Both mappings are read-only views. Use ModuleBuilder to create one.
    """

    name: str
    imports: Mapping[str, "Module"] = field(default_factory=dict)
    declarations: Mapping[str, Declaration] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "imports", MappingProxyType(dict(self.imports)))
        object.__setattr__(self, "declarations", MappingProxyType(dict(self.declarations)))

    def __eq__(self, other):
        if not isinstance(other, Module):
            return NotImplemented
        return (
            self.name == other.name
            and list(self.imports.items()) == list(other.imports.items())
            and list(self.declarations.items()) == list(other.declarations.items())
        )

    def __hash__(self):
        return hash((self.name, tuple(self.declarations)))

    def __getitem__(self, name: str) -> Declaration:
        return self.declarations[name]

    def __contains__(self, name: str) -> bool:
        return name in self.declarations

    def __iter__(self) -> Iterator[Tuple[str, Declaration]]:
        return iter(self.declarations.items())

    def resolve(self, ref: Union[TypeRef, DeclarationPath]) -> Tuple["Module", str, Declaration]:
        """
        Find the declaration a reference names.

        Returns:
            (owning module, declaration name, declaration)

        Raises:
            NameResolutionError: If nothing by that name exists
            UnsupportedError: For paths through more than one import
        """
        path = _as_path(ref)
        if len(path) == 1:
            name = path[0]
            if name not in self.declarations:
                raise NameResolutionError(f"name {name} not found in module {self.name}")
            return self, name, self.declarations[name]
        if len(path) == 2:
            mod_name, name = path
            if mod_name not in self.imports:
                raise NameResolutionError(f"module {mod_name} is not an import of module {self.name}")
            return self.imports[mod_name].resolve((name,))
        raise UnsupportedError(f"nested references not supported: {'.'.join(path)}")

    def variant(self, tag: str) -> Variant:
        """Field list of the variant named `tag`, found via its VariantOf."""
        decl = self.declarations.get(tag)
        if not isinstance(decl, VariantOf):
            raise NameResolutionError(f"{tag} is not a variant tag in module {self.name}")
        parent = self.declarations[decl.parent]
        return parent.variant(tag)


def _as_path(ref: Union[TypeRef, DeclarationPath]) -> Tuple[str, ...]:
    if isinstance(ref, TypeRef):
        return ref.path
    if isinstance(ref, str):
        return tuple(ref.split("."))
    return tuple(ref)


class ModuleBuilder:
    """
    Collects declarations for one module.

    Declarations live in an arena of slots. `reserve` registers a name and
    returns its slot index before the body exists; `fill` stores the body.
    References resolve against the name index, so they work for reserved
    (still empty) slots too. `finalize` refuses empty slots.

    With `forward_refs`, a local name may be used before it is declared
    (mutually recursive declarations); `finalize` then checks that every
    such name was declared after all.

    Example:
        builder = ModuleBuilder("shapes")
        slot = builder.reserve("Tree")
        ... parse fields, where TypeRef(("Tree",)) now resolves ...
        builder.fill(slot, Struct(fields))
        module = builder.finalize()
    """

    def __init__(self, name: str, imports: Optional[Mapping[str, Module]] = None,
                 forward_refs: bool = False):
        self.name = name
        self.imports: Dict[str, Module] = dict(imports or {})
        self.forward_refs = forward_refs
        self._slots: List[Optional[Declaration]] = []
        self._names: List[str] = []
        self._index: Dict[str, int] = {}
        # Local names referenced before being declared (forward_refs only).
        self._pending: Dict[str, None] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def reserve(self, name: str) -> int:
        """Register `name` and return its (empty) slot index."""
        if name in self._index:
            raise ParseError(f"duplicate declaration in module {self.name}", name)
        slot = len(self._slots)
        self._slots.append(None)
        self._names.append(name)
        self._index[name] = slot
        return slot

    def fill(self, slot: int, decl: Declaration) -> None:
        if self._slots[slot] is not None:
            raise ParseError(f"declaration already defined in module {self.name}", self._names[slot])
        self._slots[slot] = decl

    def define(self, name: str, decl: Declaration) -> int:
        slot = self.reserve(name)
        self.fill(slot, decl)
        return slot

    def get(self, name: str) -> Optional[Declaration]:
        """The declaration named `name`, or None while its slot is empty."""
        return self._slots[self._index[name]]

    def _check_alias_cycles(self) -> None:
        # An alias whose type is (an annotated) local reference names no
        # data of its own; a loop of those can never be encoded.
        for start in self._names:
            seen = []
            name = start
            while True:
                decl = self.get(name)
                if not isinstance(decl, Alias):
                    break
                target = strip_annotations(decl.type)
                if not isinstance(target, TypeRef) or len(target.path) != 1:
                    break
                seen.append(name)
                name = target.path[0]
                if name in seen:
                    raise ParseError("alias refers to itself", " -> ".join(seen + [name]))

    def check_ref(self, path: Sequence[str]) -> TypeRef:
        """
        Validate a reference path and return the TypeRef for it.

        Raises:
            NameResolutionError: Unknown local name, unlisted import, or
                a name missing from the import
            UnsupportedError: Paths through more than one import
        """
        path = tuple(path)
        if len(path) == 1:
            if path[0] not in self._index:
                if not self.forward_refs:
                    raise NameResolutionError(f"name {path[0]} not found in module {self.name}")
                self._pending[path[0]] = None
        elif len(path) == 2:
            mod_name, name = path
            if mod_name not in self.imports:
                raise NameResolutionError(f"module {mod_name} is not an import of module {self.name}")
            if name not in self.imports[mod_name]:
                raise NameResolutionError(f"name {name} not found in module {mod_name}")
        else:
            raise UnsupportedError(f"nested references not supported: {'.'.join(path)}")
        return TypeRef(path)

    def finalize(self) -> Module:
        """
        Produce the immutable Module.

        Raises:
            ParseError: If a reserved slot was never filled, or aliases
                refer to each other in a cycle
            NameResolutionError: If a forward reference was never declared
        """
        missing = [n for n, d in zip(self._names, self._slots) if d is None]
        if missing:
            raise ParseError(f"declarations never completed in module {self.name}", ", ".join(missing))
        undeclared = [n for n in self._pending if n not in self._index]
        if undeclared:
            raise NameResolutionError(f"name {undeclared[0]} not found in module {self.name}")
        self._check_alias_cycles()
        return Module(
            name=self.name,
            imports=self.imports,
            declarations=dict(zip(self._names, self._slots)),
        )


__all__ = [
    "Declaration",
    "Alias",
    "Struct",
    "SumType",
    "VariantOf",
    "Hom",
    "AttrType",
    "Attr",
    "TableSpec",
    "TableSchema",
    "Module",
    "ModuleBuilder",
]
