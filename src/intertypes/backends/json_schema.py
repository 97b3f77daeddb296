"""
JSON Schema exporter for intertypes modules.

Translates IR types and module declarations into draft-07 JSON Schema.
Every function here is pure: the same input always yields an equal
document, so exported schemas can be cached or diffed.

Conventions:
    - Each integer kind carries its native `minimum`/`maximum`
    - Every primitive carries a `$comment` naming its kind
    - 64-bit integers and binary are strings (matching the wire format)
    - References point at `#/$defs/<name>`
"""

import json
import logging
import os
from collections import deque
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from intertypes.algebra import (
    INTEGER_BOUNDS,
    U32,
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
    Variant,
)
from intertypes.config import DEFAULT_CONFIG, CompilerConfig
from intertypes.model import Alias, Module, Struct, SumType, TableSchema, TableSpec, VariantOf
from intertypes.tables import ID

logger = logging.getLogger(__name__)

Schema = Dict[str, Any]

_JSON_TYPES = {
    PrimitiveKind.UNIT: "null",
    PrimitiveKind.I32: "integer",
    PrimitiveKind.U32: "integer",
    PrimitiveKind.I64: "string",
    PrimitiveKind.U64: "string",
    PrimitiveKind.F64: "number",
    PrimitiveKind.BOOLEAN: "boolean",
    PrimitiveKind.STR: "string",
    PrimitiveKind.IDENT: "string",
    PrimitiveKind.BINARY: "string",
}


def _primitive_schema(t: Primitive) -> Schema:
    schema: Schema = {"type": _JSON_TYPES[t.kind], "$comment": t.kind.value}
    if t.kind in INTEGER_BOUNDS and t.kind not in WIDE_INTEGERS:
        schema["minimum"], schema["maximum"] = INTEGER_BOUNDS[t.kind]
    if t.kind in WIDE_INTEGERS:
        schema["pattern"] = "^-?[0-9]+$" if t.kind == PrimitiveKind.I64 else "^[0-9]+$"
    if t.kind == PrimitiveKind.BINARY:
        schema["contentEncoding"] = "base64"
    return schema


def ref_schema(path: Sequence[str]) -> Schema:
    return {"$ref": f"#/$defs/{'.'.join(path)}"}


def field_properties(fields: Sequence[Field], config: CompilerConfig = DEFAULT_CONFIG) -> Schema:
    return {f.name: to_json_schema(f.type, config) for f in fields}


def record_schema(fields: Sequence[Field], config: CompilerConfig = DEFAULT_CONFIG) -> Schema:
    """Object schema with one required property per field."""
    return {
        "type": "object",
        "properties": field_properties(fields, config),
        "required": [f.name for f in fields],
        "additionalProperties": False,
    }


def variant_schema(variant: Variant, config: CompilerConfig = DEFAULT_CONFIG) -> Schema:
    """Object schema of one variant: constant discriminator plus its fields."""
    disc = config.discriminator
    properties: Schema = {disc: {"const": variant.tag}}
    properties.update(field_properties(variant.fields, config))
    return {
        "type": "object",
        "properties": properties,
        "required": [disc] + [f.name for f in variant.fields],
        "additionalProperties": False,
    }


def to_json_schema(t: InterType, config: CompilerConfig = DEFAULT_CONFIG) -> Schema:
    """
    JSON Schema fragment for an IR type.

    Args:
        t: IR type
        config: Compiler settings (discriminator of variant schemas)

    Returns:
        A fresh dict; callers may mutate it.
    """
    if isinstance(t, Primitive):
        return _primitive_schema(t)

    if isinstance(t, OptionalType):
        schema = to_json_schema(t.elem, config)
        inner_type = schema.get("type")
        if isinstance(inner_type, str):
            schema["type"] = [inner_type, "null"]
            return schema
        if isinstance(inner_type, list):
            if "null" not in inner_type:
                schema["type"] = inner_type + ["null"]
            return schema
        return {"oneOf": [schema, {"type": "null"}]}

    if isinstance(t, ObjectType):
        return {"type": "object", "additionalProperties": to_json_schema(t.elem, config)}

    if isinstance(t, ListType):
        return {"type": "array", "items": to_json_schema(t.elem, config)}

    if isinstance(t, MapType):
        return {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "key": to_json_schema(t.key, config),
                    "value": to_json_schema(t.value, config),
                },
                "required": ["key", "value"],
                "additionalProperties": False,
            },
        }

    if isinstance(t, Record):
        return record_schema(t.fields, config)

    if isinstance(t, Sum):
        return {"oneOf": [ref_schema((v.tag,)) for v in t.variants]}

    if isinstance(t, Annot):
        schema = to_json_schema(t.inner, config)
        schema["description"] = t.description
        return schema

    if isinstance(t, TypeRef):
        return ref_schema(t.path)

    raise TypeError(f"Unsupported type node: {type(t)}")


def table_schema(spec: TableSpec, config: CompilerConfig = DEFAULT_CONFIG) -> Schema:
    """
    Schema of a table document.

    One required array property per object kind, whose rows carry `_id`
    and foreign keys as U32 and attributes per declared type; one optional
    array property per attribute type pool.
    """
    properties: Schema = {}
    for ob in spec.objects:
        fields: List[Field] = [Field(ID, U32)]
        fields += [Field(h.name, U32) for h in spec.homs_from(ob)]
        fields += [Field(name, native) for name, native in spec.attrs_from(ob)]
        properties[ob] = {"type": "array", "items": record_schema(fields, config)}
    for at in spec.attr_types:
        properties[at.name] = {"type": "array", "items": record_schema([Field(ID, U32)], config)}
    return {
        "type": "object",
        "properties": properties,
        "required": list(spec.objects),
        "additionalProperties": False,
    }


def declaration_schema(module: Module, name: str, config: CompilerConfig = DEFAULT_CONFIG) -> Schema:
    """The `$defs` entry of declaration `name`."""
    decl = module[name]
    if isinstance(decl, Alias):
        return to_json_schema(decl.type, config)
    if isinstance(decl, Struct):
        return record_schema(decl.fields, config)
    if isinstance(decl, SumType):
        return {"oneOf": [ref_schema((v.tag,)) for v in decl.variants]}
    if isinstance(decl, VariantOf):
        return variant_schema(module.variant(name), config)
    if isinstance(decl, TableSchema):
        return table_schema(decl.spec, config)
    raise TypeError(f"Unsupported declaration: {type(decl)}")


def _import_prefixes(module: Module) -> Dict[Module, Tuple[str, ...]]:
    """
    `$defs` prefix of every module reachable through imports.

    Breadth-first, so a module imported at several depths is keyed by its
    shortest import path and emitted once.
    """
    prefixes: Dict[Module, Tuple[str, ...]] = {module: ()}
    queue = deque([module])
    while queue:
        current = queue.popleft()
        for import_name, imported in current.imports.items():
            if imported not in prefixes:
                prefixes[imported] = prefixes[current] + (import_name,)
                queue.append(imported)
    return prefixes


def _collect_imported(module: Module, config: CompilerConfig, defs: Schema) -> None:
    """Add `$defs` entries for the declarations of every transitive import."""
    prefixes = _import_prefixes(module)
    for imported, prefix in prefixes.items():
        if not prefix:
            continue
        for name, _ in imported:
            key = ".".join(prefix + (name,))
            if key not in defs:
                defs[key] = _requalify(declaration_schema(imported, name, config), imported, prefixes)


def _requalify(schema: Any, owner: Module, prefixes: Mapping[Module, Tuple[str, ...]]) -> Any:
    """Rewrite the `$ref`s of a declaration of `owner` to document-wide keys."""
    if isinstance(schema, dict):
        result = {}
        for key, value in schema.items():
            if key == "$ref" and isinstance(value, str):
                path = tuple(value[len("#/$defs/"):].split("."))
                if len(path) == 1 and path[0] in owner:
                    value = ref_schema(prefixes[owner] + path)["$ref"]
                elif len(path) == 2 and path[0] in owner.imports:
                    value = ref_schema(prefixes[owner.imports[path[0]]] + path[1:])["$ref"]
            result[key] = _requalify(value, owner, prefixes)
        return result
    if isinstance(schema, list):
        return [_requalify(x, owner, prefixes) for x in schema]
    return schema


def module_schema(module: Module, config: CompilerConfig = DEFAULT_CONFIG) -> Schema:
    """
    Draft-07 document with one `$defs` entry per declaration.

    Declarations of imported modules, direct or transitive, are included
    under `<import path>.<name>` (e.g. `model.Equation`, or
    `model.simpleast.Term` when only `model` imports simpleast) so that
    every `$ref` in the document resolves.
    """
    defs: Schema = {name: declaration_schema(module, name, config) for name, _ in module}
    _collect_imported(module, config, defs)
    return {"$schema": config.schema_uri, "$defs": defs}


def save_module_schema(module: Module, directory: str, config: CompilerConfig = DEFAULT_CONFIG) -> str:
    """
    Write `<module>_schema.json` into `directory`.

    Returns:
        Path of the written file
    """
    schema = module_schema(module, config)
    path = os.path.join(directory, f"{module.name}_schema.json")
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(schema, f, indent=config.schema_indent)
        f.write("\n")
    logger.debug("wrote JSON schema for %s to %s", module.name, path)
    return path


__all__ = [
    "to_json_schema",
    "record_schema",
    "variant_schema",
    "table_schema",
    "declaration_schema",
    "module_schema",
    "save_module_schema",
    "ref_schema",
]
