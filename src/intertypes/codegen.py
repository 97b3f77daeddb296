"""
Runtime code generation: declarations → classes, equality, readers, writers.

`compile_module` turns a finalized Module into a CompiledModule once; the
result is a dispatch table (declaration path → Binding) inside a JsonCodec,
plus a namespace of generated classes.

For every declaration the four artifacts come from one field (or variant)
list, so they cannot drift apart:
    1. type: a dataclass per struct; per sum an abstract base class with a
       VARIANTS tag tuple and one dataclass per variant
    2. equality: the dataclass `__eq__`, i.e. same class, then field-wise
    3. reader: exact key check, then field-wise decode; sums read the
       discriminator and test each tag in declaration order
    4. writer: fields in declaration order; sums write the discriminator
       first

Namespace surface: one name per declaration and one per variant tag.
Aliases map to their IR type, table schemas to their TableSpec.
"""

import dataclasses
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from intertypes.algebra import (
    STR,
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
    TypeRef,
    Variant,
)
from intertypes.codec import Binding, JsonCodec, check_keys
from intertypes.config import DEFAULT_CONFIG, CompilerConfig
from intertypes.errors import ConversionError, SchemaMismatchError, UnknownTagError
from intertypes.model import Alias, Module, Struct, SumType, TableSchema, VariantOf
from intertypes.tables import MemoryTableStore, TableStore, read_tables, write_tables

logger = logging.getLogger(__name__)


_ANNOTATIONS = {
    PrimitiveKind.UNIT: "None",
    PrimitiveKind.I32: "int",
    PrimitiveKind.U32: "int",
    PrimitiveKind.I64: "int",
    PrimitiveKind.U64: "int",
    PrimitiveKind.F64: "float",
    PrimitiveKind.BOOLEAN: "bool",
    PrimitiveKind.STR: "str",
    PrimitiveKind.IDENT: "str",
    PrimitiveKind.BINARY: "bytes",
}


def python_annotation(t: InterType) -> str:
    """Python type annotation (as source text) for values of `t`."""
    if isinstance(t, Primitive):
        return _ANNOTATIONS[t.kind]
    if isinstance(t, OptionalType):
        return f"Optional[{python_annotation(t.elem)}]"
    if isinstance(t, ListType):
        return f"List[{python_annotation(t.elem)}]"
    if isinstance(t, ObjectType):
        return f"Dict[str, {python_annotation(t.elem)}]"
    if isinstance(t, MapType):
        return f"OrderedDict[{python_annotation(t.key)}, {python_annotation(t.value)}]"
    if isinstance(t, Record):
        if t.is_tuple:
            return f"Tuple[{', '.join(python_annotation(f.type) for f in t.fields)}]"
        return "Dict[str, Any]"
    if isinstance(t, Annot):
        return python_annotation(t.inner)
    if isinstance(t, TypeRef):
        return ".".join(t.path)
    return "Any"


# =============================================================================
# READERS / WRITERS
# =============================================================================
# These are also called from generated source (see backends.python_source).


def read_discriminator(value: Any, sum_name: str, discriminator: str) -> Any:
    """
    Tag of a serialized sum value.

    Raises:
        ConversionError: If `value` is not a JSON object
        SchemaMismatchError: If the discriminator is missing
    """
    if not isinstance(value, dict):
        raise ConversionError(TypeRef((sum_name,)), value)
    if discriminator not in value:
        raise SchemaMismatchError([discriminator], sorted(value), f"{sum_name} value has no discriminator")
    return value[discriminator]


def record_reader(codec: JsonCodec, cls: type, fields: Sequence[Field], tag: Optional[str] = None) -> Callable:
    """Reader of a struct (or variant, when `tag` is given)."""
    discriminator = codec.config.discriminator
    names = ([discriminator] if tag is not None else []) + [f.name for f in fields]
    expected = TypeRef((cls.__name__,))

    def read(value, depth):
        if not isinstance(value, dict):
            raise ConversionError(expected, value)
        check_keys(names, value)
        if tag is not None and value[discriminator] != tag:
            raise UnknownTagError(cls.__name__, value[discriminator], (tag,))
        return cls(**{f.name: codec.read(f.type, value[f.name], depth + 1) for f in fields})

    return read


def record_writer(codec: JsonCodec, cls: type, fields: Sequence[Field], tag: Optional[str] = None) -> Callable:
    """Writer of a struct (or variant, when `tag` is given)."""
    discriminator = codec.config.discriminator

    def write(out, value, depth):
        if not isinstance(value, cls):
            raise ConversionError(TypeRef((cls.__name__,)), value)
        items = [(discriminator, tag, STR)] if tag is not None else []
        items += [(f.name, getattr(value, f.name), f.type) for f in fields]
        codec.write_fields(out, items, depth + 1)

    return write


def sum_reader(codec: JsonCodec, name: str, variants: Sequence[Variant], readers: Mapping[str, Callable]) -> Callable:
    discriminator = codec.config.discriminator
    tags = [v.tag for v in variants]

    def read(value, depth):
        tag = read_discriminator(value, name, discriminator)
        for variant in variants:
            if tag == variant.tag:
                return readers[variant.tag](value, depth)
        raise UnknownTagError(name, tag, tags)

    return read


def sum_writer(name: str, writers: Mapping[type, Callable]) -> Callable:
    def write(out, value, depth):
        writer = writers.get(type(value))
        if writer is None:
            raise ConversionError(TypeRef((name,)), value, f"not a variant of {name}")
        writer(out, value, depth)

    return write


# =============================================================================
# CLASSES
# =============================================================================


def make_record_class(name: str, fields: Sequence[Field], module_name: str, bases: Tuple[type, ...] = ()) -> type:
    """Dataclass with one attribute per field, compared field-wise."""
    cls = dataclasses.make_dataclass(
        name,
        [(f.name, python_annotation(f.type)) for f in fields],
        bases=bases,
        eq=True,
        namespace={"__fields__": tuple(fields)},
    )
    cls.__module__ = module_name
    return cls


def make_sum_class(name: str, decl: SumType, module_name: str) -> type:
    """Abstract parent of the variant classes of a sum."""
    base = type(name, (), {
        "__doc__": f"Sum type {name}: {' | '.join(decl.tags)}",
        "VARIANTS": decl.tags,
    })
    base.__module__ = module_name
    return base


class CompiledModule:
    """
    Generated classes and codec of one module.

    Attributes:
        module: The source Module
        codec: JsonCodec whose bindings cover every declaration, local and
            imported (as `module.Name`)
        namespace: Exported names → class / IR type / TableSpec
        imports: Compiled imports by name
    """

    def __init__(self, module: Module, codec: JsonCodec, namespace: Dict[str, Any],
                 imports: Dict[str, "CompiledModule"]):
        self.module = module
        self.codec = codec
        self.namespace = namespace
        self.imports = imports

    @property
    def name(self) -> str:
        return self.module.name

    def __getitem__(self, name: str) -> Any:
        return self.namespace[name]

    def __getattr__(self, name: str) -> Any:
        namespace = self.__dict__.get("namespace", {})
        if name in namespace:
            return namespace[name]
        raise AttributeError(name)

    def __contains__(self, name: str) -> bool:
        return name in self.namespace

    def __dir__(self):
        return list(super().__dir__()) + list(self.namespace)

    @staticmethod
    def ref(name: Union[str, Sequence[str]]) -> TypeRef:
        """TypeRef for `Name` or `module.Name`."""
        if isinstance(name, str):
            return TypeRef(tuple(name.split(".")))
        return TypeRef(tuple(name))

    def read(self, name: str, value: Any) -> Any:
        """Read a parsed JSON value as declaration `name`."""
        return self.codec.read(self.ref(name), value)

    def decode(self, text: str, name: str) -> Any:
        """Decode JSON text as declaration `name`."""
        return self.codec.decode(text, self.ref(name))

    def encode(self, value: Any, t: Union[None, str, InterType] = None) -> str:
        """
        JSON text of `value`.

        `t` may be an IR type, a declaration name, or None for generated
        instances and plain values.
        """
        if isinstance(t, str):
            t = self.ref(t)
        return self.codec.encode(value, t)


def _bind_declaration(codec: JsonCodec, module: Module, name: str, decl, namespace: Dict[str, Any]) -> None:
    module_name = f"intertypes.generated.{module.name}"

    if isinstance(decl, Alias):
        aliased = decl.type
        namespace[name] = aliased
        codec.bind((name,), Binding(
            read=lambda value, depth: codec.read(aliased, value, depth),
            write=lambda out, value, depth: codec.write(out, value, aliased, depth),
        ))

    elif isinstance(decl, Struct):
        cls = make_record_class(name, decl.fields, module_name)
        namespace[name] = cls
        codec.bind((name,), Binding(
            read=record_reader(codec, cls, decl.fields),
            write=record_writer(codec, cls, decl.fields),
            cls=cls,
        ))

    elif isinstance(decl, SumType):
        base = make_sum_class(name, decl, module_name)
        namespace[name] = base
        readers: Dict[str, Callable] = {}
        writers: Dict[type, Callable] = {}
        for variant in decl.variants:
            cls = make_record_class(variant.tag, variant.fields, module_name, bases=(base,))
            namespace[variant.tag] = cls
            read = record_reader(codec, cls, variant.fields, tag=variant.tag)
            write = record_writer(codec, cls, variant.fields, tag=variant.tag)
            readers[variant.tag] = read
            writers[cls] = write
            codec.bind((variant.tag,), Binding(read=read, write=write, cls=cls))
        codec.bind((name,), Binding(
            read=sum_reader(codec, name, decl.variants, readers),
            write=sum_writer(name, writers),
        ))

    elif isinstance(decl, TableSchema):
        spec = decl.spec
        namespace[name] = spec

        def write_table(out, value, depth):
            if not isinstance(value, TableStore):
                raise ConversionError(TypeRef((name,)), value, "expected a table store")
            write_tables(out, value, codec, depth)

        codec.bind((name,), Binding(
            read=lambda value, depth: read_tables(MemoryTableStore(spec), value, codec, depth),
            write=write_table,
        ))

    elif isinstance(decl, VariantOf):
        # Bound together with the parent sum.
        pass

    else:
        raise TypeError(f"Unsupported declaration: {type(decl)}")


def compile_module(module: Module, config: CompilerConfig = DEFAULT_CONFIG,
                   cache: Optional[Dict[int, CompiledModule]] = None) -> CompiledModule:
    """
    Build classes and the codec dispatch table for `module` and its imports.

    Call once per finalized module and reuse the result; it is read-only.
    Classes are per compilation: pass the same `cache` dict to several calls
    so that a module and its importers share one set of classes.
    """
    if cache is None:
        cache = {}
    if id(module) in cache:
        return cache[id(module)]

    imports = {name: compile_module(m, config, cache) for name, m in module.imports.items()}
    codec = JsonCodec(config=config)
    namespace: Dict[str, Any] = {}

    for import_name, compiled in imports.items():
        for path, binding in compiled.codec.bindings.items():
            if len(path) == 1:
                codec.bind((import_name,) + path, binding)

    for name, decl in module:
        _bind_declaration(codec, module, name, decl, namespace)

    compiled = CompiledModule(module, codec, namespace, imports)
    cache[id(module)] = compiled
    logger.debug("compiled module %s (%d names)", module.name, len(namespace))
    return compiled


__all__ = [
    "CompiledModule",
    "compile_module",
    "python_annotation",
    "read_discriminator",
    "record_reader",
    "record_writer",
    "sum_reader",
    "sum_writer",
    "make_record_class",
    "make_sum_class",
]
