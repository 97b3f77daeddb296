"""
Serialization helpers for intertypes IR (types, declarations, Modules).

Provides lossless JSON/YAML round-trip via intermediate dict representation.
Declarations are kept in a list so their order survives `sort_keys`.
Imports are recorded by name only; the imported Modules must be supplied
again when loading.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Iterator, List, Mapping, Optional

import yaml

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
)
from intertypes.errors import NameResolutionError
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


def type_to_dict(t: InterType) -> Dict[str, Any]:
    if isinstance(t, Primitive):
        return {"type": "primitive", "kind": t.kind.value}
    if isinstance(t, OptionalType):
        return {"type": "optional", "elem": type_to_dict(t.elem)}
    if isinstance(t, ListType):
        return {"type": "list", "elem": type_to_dict(t.elem)}
    if isinstance(t, ObjectType):
        return {"type": "object", "elem": type_to_dict(t.elem)}
    if isinstance(t, MapType):
        return {"type": "map", "key": type_to_dict(t.key), "value": type_to_dict(t.value)}
    if isinstance(t, Record):
        return {"type": "record", "fields": [field_to_dict(f) for f in t.fields]}
    if isinstance(t, Sum):
        return {"type": "sum", "variants": [variant_to_dict(v) for v in t.variants]}
    if isinstance(t, Annot):
        return {"type": "annot", "description": t.description, "inner": type_to_dict(t.inner)}
    if isinstance(t, TypeRef):
        return {"type": "ref", "path": list(t.path)}
    raise TypeError(f"Unsupported type node: {type(t)}")


def type_from_dict(d: Dict[str, Any]) -> InterType:
    t = d.get("type")
    if t == "primitive":
        return Primitive(PrimitiveKind(d["kind"]))
    if t == "optional":
        return OptionalType(type_from_dict(d["elem"]))
    if t == "list":
        return ListType(type_from_dict(d["elem"]))
    if t == "object":
        return ObjectType(type_from_dict(d["elem"]))
    if t == "map":
        return MapType(type_from_dict(d["key"]), type_from_dict(d["value"]))
    if t == "record":
        return Record(tuple(field_from_dict(f) for f in d.get("fields", [])))
    if t == "sum":
        return Sum(tuple(variant_from_dict(v) for v in d.get("variants", [])))
    if t == "annot":
        return Annot(d["description"], type_from_dict(d["inner"]))
    if t == "ref":
        return TypeRef(tuple(d["path"]))
    raise TypeError(f"Unsupported type dict type: {t}")


def field_to_dict(f: Field) -> Dict[str, Any]:
    return {"name": f.name, "type": type_to_dict(f.type)}


def field_from_dict(d: Dict[str, Any]) -> Field:
    return Field(name=d["name"], type=type_from_dict(d["type"]))


def variant_to_dict(v: Variant) -> Dict[str, Any]:
    return {"tag": v.tag, "fields": [field_to_dict(f) for f in v.fields]}


def variant_from_dict(d: Dict[str, Any]) -> Variant:
    return Variant(tag=d["tag"], fields=tuple(field_from_dict(f) for f in d.get("fields", [])))


def spec_to_dict(spec: TableSpec) -> Dict[str, Any]:
    return {
        "objects": list(spec.objects),
        "homs": [{"name": h.name, "dom": h.dom, "codom": h.codom} for h in spec.homs],
        "attr_types": [{"name": a.name, "type": type_to_dict(a.type)} for a in spec.attr_types],
        "attrs": [{"name": a.name, "dom": a.dom, "codom": a.codom} for a in spec.attrs],
    }


def spec_from_dict(d: Dict[str, Any]) -> TableSpec:
    return TableSpec(
        objects=tuple(d.get("objects", [])),
        homs=tuple(Hom(h["name"], h["dom"], h["codom"]) for h in d.get("homs", [])),
        attr_types=tuple(AttrType(a["name"], type_from_dict(a["type"])) for a in d.get("attr_types", [])),
        attrs=tuple(Attr(a["name"], a["dom"], a["codom"]) for a in d.get("attrs", [])),
    )


def declaration_to_dict(name: str, decl: Declaration) -> Dict[str, Any]:
    if isinstance(decl, Alias):
        return {"name": name, "kind": "alias", "type": type_to_dict(decl.type)}
    if isinstance(decl, Struct):
        return {"name": name, "kind": "struct", "fields": [field_to_dict(f) for f in decl.fields]}
    if isinstance(decl, SumType):
        return {"name": name, "kind": "sum", "variants": [variant_to_dict(v) for v in decl.variants]}
    if isinstance(decl, VariantOf):
        return {"name": name, "kind": "variant_of", "parent": decl.parent}
    if isinstance(decl, TableSchema):
        return {"name": name, "kind": "schema", "spec": spec_to_dict(decl.spec)}
    raise TypeError(f"Unsupported Declaration type: {type(decl)}")


def declaration_from_dict(d: Dict[str, Any]) -> Declaration:
    kind = d.get("kind")
    if kind == "alias":
        return Alias(type_from_dict(d["type"]))
    if kind == "struct":
        return Struct(tuple(field_from_dict(f) for f in d.get("fields", [])))
    if kind == "sum":
        return SumType(tuple(variant_from_dict(v) for v in d.get("variants", [])))
    if kind == "variant_of":
        return VariantOf(d["parent"])
    if kind == "schema":
        return TableSchema(spec_from_dict(d["spec"]))
    raise TypeError(f"Unsupported declaration dict kind: {kind}")


def _refs(t: InterType) -> Iterator[TypeRef]:
    """Every TypeRef inside `t`."""
    if isinstance(t, TypeRef):
        yield t
    elif isinstance(t, (OptionalType, ListType, ObjectType)):
        yield from _refs(t.elem)
    elif isinstance(t, MapType):
        yield from _refs(t.key)
        yield from _refs(t.value)
    elif isinstance(t, Record):
        for f in t.fields:
            yield from _refs(f.type)
    elif isinstance(t, Sum):
        for v in t.variants:
            for f in v.fields:
                yield from _refs(f.type)
    elif isinstance(t, Annot):
        yield from _refs(t.inner)


def _declaration_types(decl: Declaration) -> List[InterType]:
    if isinstance(decl, Alias):
        return [decl.type]
    if isinstance(decl, Struct):
        return [f.type for f in decl.fields]
    if isinstance(decl, SumType):
        return [f.type for v in decl.variants for f in v.fields]
    if isinstance(decl, TableSchema):
        return [a.type for a in decl.spec.attr_types]
    return []


def module_to_dict(m: Module) -> Dict[str, Any]:
    return {
        "name": m.name,
        "imports": list(m.imports),
        "declarations": [declaration_to_dict(name, decl) for name, decl in m],
    }


def module_from_dict(d: Dict[str, Any], imports: Optional[Mapping[str, Module]] = None) -> Module:
    """
    Rebuild a Module.

    Args:
        d: Dict produced by `module_to_dict`
        imports: Modules for the import names recorded in `d`

    Raises:
        NameResolutionError: If an import is not supplied or a reference
            does not resolve
    """
    available = dict(imports or {})
    selected = {}
    for name in d.get("imports", []):
        if name not in available:
            raise NameResolutionError(f"module {d['name']} imports {name}, which was not supplied")
        selected[name] = available[name]

    builder = ModuleBuilder(d["name"], selected)
    for item in d.get("declarations", []):
        builder.define(item["name"], declaration_from_dict(item))

    # References may point forwards, so check them once every name exists.
    for item in d.get("declarations", []):
        for t in _declaration_types(builder.get(item["name"])):
            for ref in _refs(t):
                builder.check_ref(ref.path)
    return builder.finalize()


def module_to_json(m: Module) -> str:
    return json.dumps(module_to_dict(m), sort_keys=True)


def module_from_json(s: str, imports: Optional[Mapping[str, Module]] = None) -> Module:
    d = json.loads(s)
    return module_from_dict(d, imports)


def module_to_yaml(m: Module) -> str:
    return yaml.safe_dump(module_to_dict(m))


def module_from_yaml(s: str, imports: Optional[Mapping[str, Module]] = None) -> Module:
    d = yaml.safe_load(s)
    return module_from_dict(d, imports)
