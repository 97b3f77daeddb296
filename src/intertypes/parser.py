"""
Declaration Parser for intertypes (surface text → IR Module).

Converts declaration source text into a finalized Module.

Source Format:
    import simpleast

    alias Names = List[Str]

    struct Point {
        x :: I32
        y :: I32
    }

    sum Shape {
        Circle(r :: F64)
        Square(s :: F64)
        Empty
    }

    schema Graph {
        V :: Ob
        E :: Ob
        src :: Hom(E, V)
        Weight :: AttrType(F64)
        weight :: Attr(E, Weight)
    }

Syntax Notes:
    - `#` starts a comment running to the end of the line
    - Commas between fields, variants and schema items are optional
    - A bare field type gets the ordinal name `_i` (1-based)
    - `module.Name` refers to a declaration of an imported module
"""

import json
import keyword
import logging
import os
import re
import warnings
from typing import Dict, List, Mapping, Optional, Tuple

from intertypes.algebra import (
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
    Variant,
    ordinal_name,
)
from intertypes.config import DEFAULT_CONFIG, CompilerConfig
from intertypes.errors import NameResolutionError, ParseError
from intertypes.model import (
    Alias,
    Attr,
    AttrType,
    Declaration,
    Hom,
    Module,
    ModuleBuilder,
    Struct,
    SumType,
    TableSchema,
    TableSpec,
    VariantOf,
)

logger = logging.getLogger(__name__)


PRIMITIVES: Dict[str, PrimitiveKind] = {kind.value: kind for kind in PrimitiveKind}
PRIMITIVES.update({
    "Bool": PrimitiveKind.BOOLEAN,
    "Int32": PrimitiveKind.I32,
    "UInt32": PrimitiveKind.U32,
    "Int64": PrimitiveKind.I64,
    "UInt64": PrimitiveKind.U64,
    "Float64": PrimitiveKind.F64,
    "String": PrimitiveKind.STR,
    "Symbol": PrimitiveKind.IDENT,
})

CONSTRUCTORS = ("Optional", "List", "Object", "Map", "Record", "Sum", "Annot")

_TOKEN_RE = re.compile(
    r'(?P<skip>\s+|\#[^\n]*)'
    r'|(?P<token>"(?:[^"\\]|\\.)*"|::|[\[\](){},=.]|[A-Za-z_][A-Za-z0-9_]*)'
    r'|(?P<bad>.)'
)
_NAME_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


def tokenize(text: str) -> List[str]:
    """
    Split source text into tokens.

    Raises:
        ParseError: On a character that starts no token
    """
    tokens = []
    for m in _TOKEN_RE.finditer(text):
        if m.group("bad") is not None:
            start = m.start()
            raise ParseError(f"unexpected character at offset {start}", text[start:start + 20])
        if m.group("token") is not None:
            tokens.append(m.group("token"))
    return tokens


def _is_name(token: str) -> bool:
    return bool(_NAME_RE.match(token))


def _peek(tokens: List[str], pos: int) -> Optional[str]:
    return tokens[pos] if pos < len(tokens) else None


def _expect(tokens: List[str], pos: int, expected: str) -> int:
    token = _peek(tokens, pos)
    if token != expected:
        raise ParseError(f"expected '{expected}'", _fragment(tokens, pos))
    return pos + 1


def _expect_name(tokens: List[str], pos: int, what: str = "a name") -> Tuple[str, int]:
    token = _peek(tokens, pos)
    if token is None or not _is_name(token):
        raise ParseError(f"expected {what}", _fragment(tokens, pos))
    return token, pos + 1


def _fragment(tokens: List[str], pos: int) -> str:
    if pos >= len(tokens):
        return "<end of input>"
    return " ".join(tokens[pos:pos + 5])


# =============================================================================
# TYPES
# =============================================================================


def _parse_type(tokens: List[str], pos: int, builder: ModuleBuilder) -> Tuple[InterType, int]:
    """Parse one type expression."""
    token = _peek(tokens, pos)
    if token is None:
        raise ParseError("unexpected end of type expression", "<end of input>")
    if not _is_name(token):
        raise ParseError("could not parse type", _fragment(tokens, pos))

    # Constructor application: Name[...]
    if _peek(tokens, pos + 1) == "[":
        if token not in CONSTRUCTORS:
            raise ParseError("unrecognized type constructor", _fragment(tokens, pos))
        return _parse_constructor(token, tokens, pos + 2, builder)

    if token in PRIMITIVES:
        return Primitive(PRIMITIVES[token]), pos + 1

    # Reference: Name or module.Name
    path = [token]
    pos += 1
    while _peek(tokens, pos) == ".":
        name, pos = _expect_name(tokens, pos + 1)
        path.append(name)
    return builder.check_ref(path), pos


def _parse_constructor(ctor: str, tokens: List[str], pos: int, builder: ModuleBuilder) -> Tuple[InterType, int]:
    """Parse the arguments of `ctor[` up to and including the closing `]`."""
    if ctor in ("Optional", "List", "Object"):
        elem, pos = _parse_type(tokens, pos, builder)
        pos = _expect(tokens, pos, "]")
        wrapper = {"Optional": OptionalType, "List": ListType, "Object": ObjectType}[ctor]
        return wrapper(elem), pos

    if ctor == "Map":
        key, pos = _parse_type(tokens, pos, builder)
        pos = _expect(tokens, pos, ",")
        value, pos = _parse_type(tokens, pos, builder)
        pos = _expect(tokens, pos, "]")
        return MapType(key, value), pos

    if ctor == "Record":
        fields, pos = _parse_fields(tokens, pos, builder, closer="]")
        return Record(fields), pos + 1

    if ctor == "Sum":
        variants, pos = _parse_variants(tokens, pos, builder, closer="]")
        return Sum(variants), pos + 1

    # Annot["description", T]
    token = _peek(tokens, pos)
    if token is None or not token.startswith('"'):
        raise ParseError("Annot expects a description string", _fragment(tokens, pos))
    try:
        description = json.loads(token)
    except ValueError as e:
        raise ParseError("invalid description string", token) from e
    pos = _expect(tokens, pos + 1, ",")
    inner, pos = _parse_type(tokens, pos, builder)
    pos = _expect(tokens, pos, "]")
    return Annot(description, inner), pos


def _parse_fields(
    tokens: List[str], pos: int, builder: ModuleBuilder, closer: str, reserved: Tuple[str, ...] = ()
) -> Tuple[Tuple[Field, ...], int]:
    """
    Parse fields up to `closer` (not consumed).

    Each field is `name :: Type` or a bare `Type`, which is named by its
    1-based position.
    """
    fields: List[Field] = []
    while _peek(tokens, pos) != closer:
        if _peek(tokens, pos) is None:
            raise ParseError(f"missing '{closer}' after fields", "<end of input>")
        if _is_name(tokens[pos]) and _peek(tokens, pos + 1) == "::":
            name = tokens[pos]
            field_type, pos = _parse_type(tokens, pos + 2, builder)
        else:
            name = ordinal_name(len(fields) + 1)
            field_type, pos = _parse_type(tokens, pos, builder)

        if keyword.iskeyword(name):
            raise ParseError("field name is a reserved word", name)
        if name in reserved:
            raise ParseError("field name is reserved for the sum discriminator", name)
        if any(f.name == name for f in fields):
            raise ParseError("duplicate field name", name)

        fields.append(Field(name, field_type))
        if _peek(tokens, pos) == ",":
            pos += 1
    return tuple(fields), pos


def _parse_variants(
    tokens: List[str], pos: int, builder: ModuleBuilder, closer: str, reserved: Tuple[str, ...] = ()
) -> Tuple[Tuple[Variant, ...], int]:
    """Parse variants up to `closer` (not consumed): `Tag` or `Tag(fields)`."""
    variants: List[Variant] = []
    while _peek(tokens, pos) != closer:
        if _peek(tokens, pos) is None:
            raise ParseError(f"missing '{closer}' after variants", "<end of input>")
        tag, pos = _expect_name(tokens, pos, "a variant tag")
        if any(v.tag == tag for v in variants):
            raise ParseError("duplicate variant tag", tag)

        fields: Tuple[Field, ...] = ()
        if _peek(tokens, pos) == "(":
            fields, pos = _parse_fields(tokens, pos + 1, builder, closer=")", reserved=reserved)
            pos += 1
        variants.append(Variant(tag, fields))

        if _peek(tokens, pos) == ",":
            pos += 1
    return tuple(variants), pos


# =============================================================================
# DECLARATIONS
# =============================================================================


def _parse_schema_items(tokens: List[str], pos: int, builder: ModuleBuilder) -> Tuple[TableSpec, int]:
    """Parse the body of a `schema` declaration up to `}` (not consumed)."""
    objects: List[str] = []
    homs: List[Hom] = []
    attr_types: List[AttrType] = []
    attrs: List[Attr] = []

    while _peek(tokens, pos) != "}":
        if _peek(tokens, pos) is None:
            raise ParseError("missing '}' after schema", "<end of input>")
        name, pos = _expect_name(tokens, pos)
        pos = _expect(tokens, pos, "::")
        kind, pos = _expect_name(tokens, pos, "Ob, Hom, AttrType or Attr")

        if kind == "Ob":
            objects.append(name)
        elif kind in ("Hom", "Attr"):
            pos = _expect(tokens, pos, "(")
            dom, pos = _expect_name(tokens, pos)
            pos = _expect(tokens, pos, ",")
            codom, pos = _expect_name(tokens, pos)
            pos = _expect(tokens, pos, ")")
            if kind == "Hom":
                homs.append(Hom(name, dom, codom))
            else:
                attrs.append(Attr(name, dom, codom))
        elif kind == "AttrType":
            pos = _expect(tokens, pos, "(")
            native, pos = _parse_type(tokens, pos, builder)
            pos = _expect(tokens, pos, ")")
            attr_types.append(AttrType(name, native))
        else:
            raise ParseError("unrecognized schema item", f"{name} :: {kind}")

        if _peek(tokens, pos) == ",":
            pos += 1

    spec = TableSpec(tuple(objects), tuple(homs), tuple(attr_types), tuple(attrs))
    return spec, pos


def _parse_declaration(
    tokens: List[str], pos: int, builder: ModuleBuilder, config: CompilerConfig
) -> Tuple[str, Declaration, int]:
    """Parse one declaration starting at `pos` and insert it into `builder`."""
    head = _peek(tokens, pos)

    if head == "alias":
        name, pos = _expect_name(tokens, pos + 1)
        pos = _expect(tokens, pos, "=")
        aliased, pos = _parse_type(tokens, pos, builder)
        decl: Declaration = Alias(aliased)
        builder.define(name, decl)
        return name, decl, pos

    if head in ("struct", "sum", "schema"):
        name, pos = _expect_name(tokens, pos + 1)
        pos = _expect(tokens, pos, "{")
        # Reserve first so that the body may refer to `name`.
        slot = builder.reserve(name)
        if head == "struct":
            fields, pos = _parse_fields(tokens, pos, builder, closer="}")
            decl = Struct(fields)
        elif head == "sum":
            variants, pos = _parse_variants(tokens, pos, builder, closer="}", reserved=(config.discriminator,))
            decl = SumType(variants)
        else:
            spec, pos = _parse_schema_items(tokens, pos, builder)
            decl = TableSchema(spec)
        pos = _expect(tokens, pos, "}")
        builder.fill(slot, decl)

        if isinstance(decl, SumType):
            for variant in decl.variants:
                builder.define(variant.tag, VariantOf(name))
        return name, decl, pos

    raise ParseError("could not parse declaration", _fragment(tokens, pos))


def parse_type(text: str, builder: ModuleBuilder) -> InterType:
    """
    Parse a single type expression, resolving names against `builder`.

    Raises:
        ParseError: If the text is not exactly one type expression
        NameResolutionError: If it refers to unknown names
    """
    tokens = tokenize(text)
    result, pos = _parse_type(tokens, 0, builder)
    if pos < len(tokens):
        raise ParseError("unexpected tokens after type", _fragment(tokens, pos))
    return result


def parse_declaration(text: str, builder: ModuleBuilder, config: CompilerConfig = DEFAULT_CONFIG) -> Tuple[str, Declaration]:
    """
    Parse one declaration and insert it into `builder`.

    Returns:
        (name, declaration)
    """
    tokens = tokenize(text)
    name, decl, pos = _parse_declaration(tokens, 0, builder, config)
    if pos < len(tokens):
        raise ParseError("unexpected tokens after declaration", _fragment(tokens, pos))
    logger.debug("parsed %s %s", type(decl).__name__, name)
    return name, decl


def parse_module(
    text: str,
    name: str,
    imports: Optional[Mapping[str, Module]] = None,
    config: CompilerConfig = DEFAULT_CONFIG,
) -> Module:
    """
    Parse a whole source unit into a finalized Module.

    Args:
        text: Source text
        name: Module name
        imports: Modules available for `import` statements, by name.
            Only those the text actually imports become visible.
        config: Compiler settings (discriminator name)

    Raises:
        ParseError, NameResolutionError, UnsupportedError
    """
    available = dict(imports or {})
    builder = ModuleBuilder(name, forward_refs=True)
    tokens = tokenize(text)
    pos = 0

    while pos < len(tokens):
        if tokens[pos] == "import":
            mod_name, pos = _expect_name(tokens, pos + 1, "a module name")
            if mod_name not in available:
                raise NameResolutionError(f"module {name} imports {mod_name}, which was not supplied")
            builder.imports[mod_name] = available[mod_name]
            continue
        decl_name, decl, pos = _parse_declaration(tokens, pos, builder, config)
        logger.debug("parsed %s %s.%s", type(decl).__name__, name, decl_name)

    module = builder.finalize()
    if not module.declarations:
        warnings.warn(f"Module {name} declares nothing", UserWarning)
    return module


def parse_module_file(
    filepath: str,
    imports: Optional[Mapping[str, Module]] = None,
    config: CompilerConfig = DEFAULT_CONFIG,
) -> Module:
    """
    Parse a declaration file into a Module named after the file.

    Raises:
        FileNotFoundError: If file doesn't exist
        ParseError: If the file does not end with the configured suffix
    """
    if not filepath.endswith(config.source_suffix):
        raise ParseError(f"expected a file ending in {config.source_suffix!r}", filepath)
    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            content = f.read()
    except FileNotFoundError:
        raise FileNotFoundError(f"Declaration file not found: {filepath}")

    name = os.path.basename(filepath)[: -len(config.source_suffix)]
    return parse_module(content, name, imports=imports, config=config)


# =============================================================================
# PRINTING (IR → surface text)
# =============================================================================


def format_type(t: InterType) -> str:
    """Render a type in surface syntax; `parse_type` reads it back."""
    if isinstance(t, Primitive):
        return t.kind.value
    if isinstance(t, OptionalType):
        return f"Optional[{format_type(t.elem)}]"
    if isinstance(t, ListType):
        return f"List[{format_type(t.elem)}]"
    if isinstance(t, ObjectType):
        return f"Object[{format_type(t.elem)}]"
    if isinstance(t, MapType):
        return f"Map[{format_type(t.key)}, {format_type(t.value)}]"
    if isinstance(t, Record):
        return f"Record[{', '.join(format_field(f) for f in t.fields)}]"
    if isinstance(t, Sum):
        return f"Sum[{', '.join(format_variant(v) for v in t.variants)}]"
    if isinstance(t, Annot):
        return f"Annot[{json.dumps(t.description)}, {format_type(t.inner)}]"
    if isinstance(t, TypeRef):
        return ".".join(t.path)
    raise TypeError(f"Unsupported type node: {type(t)}")


def format_field(f: Field) -> str:
    return f"{f.name} :: {format_type(f.type)}"


def format_variant(v: Variant) -> str:
    if not v.fields:
        return v.tag
    return f"{v.tag}({', '.join(format_field(f) for f in v.fields)})"


def format_declaration(name: str, decl: Declaration) -> Optional[str]:
    """
    Render a declaration in surface syntax.

    Returns None for VariantOf entries, which the parser derives from
    their sum.
    """
    if isinstance(decl, Alias):
        return f"alias {name} = {format_type(decl.type)}"
    if isinstance(decl, Struct):
        body = "".join(f"    {format_field(f)}\n" for f in decl.fields)
        return f"struct {name} {{\n{body}}}"
    if isinstance(decl, SumType):
        body = "".join(f"    {format_variant(v)}\n" for v in decl.variants)
        return f"sum {name} {{\n{body}}}"
    if isinstance(decl, TableSchema):
        spec = decl.spec
        lines = [f"    {ob} :: Ob" for ob in spec.objects]
        lines += [f"    {h.name} :: Hom({h.dom}, {h.codom})" for h in spec.homs]
        lines += [f"    {a.name} :: AttrType({format_type(a.type)})" for a in spec.attr_types]
        lines += [f"    {a.name} :: Attr({a.dom}, {a.codom})" for a in spec.attrs]
        body = "".join(line + "\n" for line in lines)
        return f"schema {name} {{\n{body}}}"
    if isinstance(decl, VariantOf):
        return None
    raise TypeError(f"Unsupported declaration: {type(decl)}")


def format_module(module: Module) -> str:
    """Render a whole module; `parse_module` reads it back."""
    chunks = [f"import {name}" for name in module.imports]
    for name, decl in module:
        text = format_declaration(name, decl)
        if text is not None:
            chunks.append(text)
    return "\n\n".join(chunks) + "\n"


__all__ = [
    "tokenize",
    "parse_type",
    "parse_declaration",
    "parse_module",
    "parse_module_file",
    "format_type",
    "format_field",
    "format_variant",
    "format_declaration",
    "format_module",
    "PRIMITIVES",
    "CONSTRUCTORS",
]
