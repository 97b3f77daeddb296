"""
Python source generator for intertypes modules.

Emits a standalone Python module per intertypes module:
    - a dataclass per struct and per sum variant (equality comes from the
      dataclass, field-wise), plus a parent class per sum
    - `read_<Name>` / `write_<Name>` functions, written out field by field
    - BINDINGS (declaration path → Binding) and CODEC, wired together so
      that `encode` / `decode` work on the generated classes

Generated modules import the generated modules of their imports under
the import's own name, so write them side by side (see
`save_python_module`).
"""

import logging
import os
from typing import List, Sequence

from intertypes.algebra import (
    Annot,
    Field,
    InterType,
    ListType,
    MapType,
    ObjectType,
    OptionalType,
    Primitive,
    Record,
    Sum,
    TypeRef,
    Variant,
)
from intertypes.codegen import python_annotation
from intertypes.config import DEFAULT_CONFIG, CompilerConfig
from intertypes.model import Alias, Module, Struct, SumType, TableSchema, TableSpec, VariantOf

logger = logging.getLogger(__name__)

INDENT = "    "

_HEADER = '''\
"""
Generated by intertypes from module `{name}`. Do not edit by hand.
"""

from __future__ import annotations

from dataclasses import dataclass as _dataclass

from intertypes import algebra as _ir
from intertypes import codegen as _rt
from intertypes import model as _model
from intertypes import tables as _tables
from intertypes.codec import Binding as _Binding
from intertypes.codec import JsonCodec as _JsonCodec
from intertypes.codec import check_keys as _check_keys
from intertypes.config import CompilerConfig as _CompilerConfig
from intertypes.errors import ConversionError as _ConversionError
from intertypes.errors import UnknownTagError as _UnknownTagError
'''


def _tuple(items: Sequence[str]) -> str:
    if not items:
        return "()"
    return "(" + ", ".join(items) + ",)"


def render_type(t: InterType) -> str:
    """Python expression rebuilding IR type `t`."""
    if isinstance(t, Primitive):
        return f"_ir.{t.kind.name}"
    if isinstance(t, OptionalType):
        return f"_ir.OptionalType({render_type(t.elem)})"
    if isinstance(t, ListType):
        return f"_ir.ListType({render_type(t.elem)})"
    if isinstance(t, ObjectType):
        return f"_ir.ObjectType({render_type(t.elem)})"
    if isinstance(t, MapType):
        return f"_ir.MapType({render_type(t.key)}, {render_type(t.value)})"
    if isinstance(t, Record):
        return f"_ir.Record({_render_fields(t.fields)})"
    if isinstance(t, Sum):
        return f"_ir.Sum({_tuple([_render_variant(v) for v in t.variants])})"
    if isinstance(t, Annot):
        return f"_ir.Annot({t.description!r}, {render_type(t.inner)})"
    if isinstance(t, TypeRef):
        return f"_ir.TypeRef({t.path!r})"
    raise TypeError(f"Unsupported type node: {type(t)}")


def _render_fields(fields: Sequence[Field]) -> str:
    return _tuple([f"_ir.Field({f.name!r}, {render_type(f.type)})" for f in fields])


def _render_variant(v: Variant) -> str:
    return f"_ir.Variant({v.tag!r}, {_render_fields(v.fields)})"


def render_spec(spec: TableSpec) -> str:
    """Python expression rebuilding a TableSpec."""
    homs = [f"_model.Hom({h.name!r}, {h.dom!r}, {h.codom!r})" for h in spec.homs]
    attr_types = [f"_model.AttrType({a.name!r}, {render_type(a.type)})" for a in spec.attr_types]
    attrs = [f"_model.Attr({a.name!r}, {a.dom!r}, {a.codom!r})" for a in spec.attrs]
    return (
        "_model.TableSpec(\n"
        f"{INDENT}objects={_tuple([repr(ob) for ob in spec.objects])},\n"
        f"{INDENT}homs={_tuple(homs)},\n"
        f"{INDENT}attr_types={_tuple(attr_types)},\n"
        f"{INDENT}attrs={_tuple(attrs)},\n"
        ")"
    )


def _class_lines(name: str, fields: Sequence[Field], base: str = "") -> List[str]:
    lines = ["@_dataclass", f"class {name}{f'({base})' if base else ''}:"]
    if not fields:
        lines.append(f"{INDENT}pass")
    for f in fields:
        lines.append(f"{INDENT}{f.name}: {python_annotation(f.type)}")
    return lines


def _record_reader_lines(name: str, fields: Sequence[Field], discriminator: str = "", tag: str = "") -> List[str]:
    names = ([discriminator] if tag else []) + [f.name for f in fields]
    lines = [
        f"def read_{name}(value, depth=0):",
        f"{INDENT}if not isinstance(value, dict):",
        f"{INDENT * 2}raise _ConversionError(_ir.TypeRef(({name!r},)), value)",
        f"{INDENT}_check_keys({_tuple([repr(n) for n in names])}, value)",
    ]
    if tag:
        lines.append(f"{INDENT}if value[{discriminator!r}] != {tag!r}:")
        lines.append(f"{INDENT * 2}raise _UnknownTagError({name!r}, value[{discriminator!r}], ({tag!r},))")
    if not fields:
        lines.append(f"{INDENT}return {name}()")
        return lines
    lines.append(f"{INDENT}return {name}(")
    for f in fields:
        lines.append(f"{INDENT * 2}{f.name}=CODEC.read({render_type(f.type)}, value[{f.name!r}], depth + 1),")
    lines.append(f"{INDENT})")
    return lines


def _record_writer_lines(name: str, fields: Sequence[Field], discriminator: str = "", tag: str = "") -> List[str]:
    lines = [
        f"def write_{name}(out, value, depth=0):",
        f"{INDENT}if not isinstance(value, {name}):",
        f"{INDENT * 2}raise _ConversionError(_ir.TypeRef(({name!r},)), value)",
        f"{INDENT}CODEC.write_fields(out, [",
    ]
    if tag:
        lines.append(f"{INDENT * 2}({discriminator!r}, {tag!r}, _ir.STR),")
    for f in fields:
        lines.append(f"{INDENT * 2}({f.name!r}, value.{f.name}, {render_type(f.type)}),")
    lines.append(f"{INDENT}], depth + 1)")
    return lines


def _struct_lines(name: str, decl: Struct) -> List[str]:
    lines = _class_lines(name, decl.fields)
    lines += ["", ""] + _record_reader_lines(name, decl.fields)
    lines += ["", ""] + _record_writer_lines(name, decl.fields)
    return lines


def _sum_lines(name: str, decl: SumType, config: CompilerConfig) -> List[str]:
    disc = config.discriminator
    lines = [
        f"class {name}:",
        f'{INDENT}"""Sum type {name}: {" | ".join(decl.tags)}"""',
        "",
        f"{INDENT}VARIANTS = {_tuple([repr(t) for t in decl.tags])}",
    ]

    for v in decl.variants:
        lines += ["", ""] + _class_lines(v.tag, v.fields, base=name)
        lines += ["", ""] + _record_reader_lines(v.tag, v.fields, discriminator=disc, tag=v.tag)
        lines += ["", ""] + _record_writer_lines(v.tag, v.fields, discriminator=disc, tag=v.tag)

    # Reader: compare the tag against each variant in declaration order.
    lines += ["", "", f"def read_{name}(value, depth=0):"]
    lines.append(f"{INDENT}tag = _rt.read_discriminator(value, {name!r}, {disc!r})")
    for i, v in enumerate(decl.variants):
        keyword = "if" if i == 0 else "elif"
        lines.append(f"{INDENT}{keyword} tag == {v.tag!r}:")
        lines.append(f"{INDENT * 2}return read_{v.tag}(value, depth)")
    lines.append(f"{INDENT}raise _UnknownTagError({name!r}, tag, {name}.VARIANTS)")

    lines += ["", "", f"def write_{name}(out, value, depth=0):"]
    for i, v in enumerate(decl.variants):
        keyword = "if" if i == 0 else "elif"
        lines.append(f"{INDENT}{keyword} isinstance(value, {v.tag}):")
        lines.append(f"{INDENT * 2}return write_{v.tag}(out, value, depth)")
    lines.append(f"{INDENT}raise _ConversionError(_ir.TypeRef(({name!r},)), value, 'not a variant of {name}')")
    return lines


def _alias_lines(name: str, decl: Alias) -> List[str]:
    return [
        f"{name} = {render_type(decl.type)}",
        "",
        "",
        f"def read_{name}(value, depth=0):",
        f"{INDENT}return CODEC.read({name}, value, depth)",
        "",
        "",
        f"def write_{name}(out, value, depth=0):",
        f"{INDENT}CODEC.write(out, value, {name}, depth)",
    ]


def _table_lines(name: str, decl: TableSchema) -> List[str]:
    return [
        f"{name} = {render_spec(decl.spec)}",
        "",
        "",
        f"def read_{name}(value, depth=0):",
        f"{INDENT}return _tables.read_tables(_tables.MemoryTableStore({name}), value, CODEC, depth)",
        "",
        "",
        f"def write_{name}(out, value, depth=0):",
        f"{INDENT}_tables.write_tables(out, value, CODEC, depth)",
    ]


def generate_python_source(module: Module, config: CompilerConfig = DEFAULT_CONFIG) -> str:
    """
    Generate Python source for a module.

    Args:
        module: Finalized module
        config: Compiler settings (discriminator, max_depth)

    Returns:
        String containing a complete Python module
    """
    lines = [_HEADER.format(name=module.name).rstrip("\n")]
    for import_name in module.imports:
        lines.append(f"import {import_name}")

    lines += [
        "",
        f"CODEC = _JsonCodec(config=_CompilerConfig(discriminator={config.discriminator!r}, max_depth={config.max_depth!r}))",
    ]

    exported: List[str] = []
    bindings: List[str] = []
    for name, decl in module:
        if isinstance(decl, VariantOf):
            # Emitted with the parent sum.
            continue
        lines += ["", "", f"# {'=' * 77}", f"# {name}", f"# {'=' * 77}", "", ""]
        if isinstance(decl, Struct):
            lines += _struct_lines(name, decl)
            bindings.append(f"{INDENT}({name!r},): _Binding(read_{name}, write_{name}, {name}),")
        elif isinstance(decl, SumType):
            lines += _sum_lines(name, decl, config)
            bindings.append(f"{INDENT}({name!r},): _Binding(read_{name}, write_{name}),")
            for v in decl.variants:
                bindings.append(f"{INDENT}({v.tag!r},): _Binding(read_{v.tag}, write_{v.tag}, {v.tag}),")
        elif isinstance(decl, Alias):
            lines += _alias_lines(name, decl)
            bindings.append(f"{INDENT}({name!r},): _Binding(read_{name}, write_{name}),")
        elif isinstance(decl, TableSchema):
            lines += _table_lines(name, decl)
            bindings.append(f"{INDENT}({name!r},): _Binding(read_{name}, write_{name}),")
        else:
            raise TypeError(f"Unsupported declaration: {type(decl)}")
        exported.append(name)
        if isinstance(decl, SumType):
            exported += list(decl.tags)

    lines += ["", "", "BINDINGS = {"] + bindings + ["}", ""]
    lines.append("for _path, _binding in BINDINGS.items():")
    lines.append(f"{INDENT}CODEC.bind(_path, _binding)")
    for import_name in module.imports:
        lines.append(f"for _path, _binding in {import_name}.BINDINGS.items():")
        lines.append(f"{INDENT}CODEC.bind(({import_name!r},) + _path, _binding)")

    lines += [
        "",
        "",
        "def encode(value, t=None):",
        f"{INDENT}return CODEC.encode(value, t)",
        "",
        "",
        "def decode(text, name):",
        f"{INDENT}return CODEC.decode(text, _ir.TypeRef(tuple(name.split('.'))))",
        "",
        "",
        "__all__ = [",
    ]
    lines += [f"{INDENT}{n!r}," for n in exported + ["BINDINGS", "CODEC", "encode", "decode"]]
    lines.append("]")

    return "\n".join(lines) + "\n"


def save_python_module(module: Module, directory: str, config: CompilerConfig = DEFAULT_CONFIG) -> str:
    """
    Generate source and save it as `<module>.py` in `directory`.

    Returns:
        Path of the written file
    """
    source = generate_python_source(module, config)
    path = os.path.join(directory, f"{module.name}.py")
    with open(path, 'w', encoding='utf-8') as f:
        f.write(source)
    logger.debug("wrote generated source for %s to %s", module.name, path)
    return path


__all__ = ["generate_python_source", "save_python_module", "render_type", "render_spec"]
