"""
Tests for the JSON Schema exporter.

These tests verify:
    - One schema case per IR constructor
    - Module documents with one `$defs` entry per declaration
    - Imported declarations and qualified references
    - Determinism and file output
"""

import json

from intertypes.algebra import (
    BINARY,
    F64,
    I32,
    I64,
    STR,
    U32,
    UNIT,
    Annot,
    Field,
    ListType,
    MapType,
    ObjectType,
    OptionalType,
    Record,
    TypeRef,
    tuple_type,
)
from intertypes.backends.json_schema import (
    module_schema,
    save_module_schema,
    table_schema,
    to_json_schema,
)
from intertypes.config import DRAFT_07, CompilerConfig
from intertypes.examples import build_graph_module, build_model, build_shapes, build_simpleast
from intertypes.parser import parse_module

I32_SCHEMA = {"type": "integer", "$comment": "I32", "minimum": -(2**31), "maximum": 2**31 - 1}
U32_SCHEMA = {"type": "integer", "$comment": "U32", "minimum": 0, "maximum": 2**32 - 1}


def collect_refs(node):
    """Every `$ref` value in a schema document."""
    if isinstance(node, dict):
        refs = [node["$ref"]] if "$ref" in node else []
        for value in node.values():
            refs += collect_refs(value)
        return refs
    if isinstance(node, list):
        return [ref for item in node for ref in collect_refs(item)]
    return []


class TestPrimitiveSchemas:
    """Test scalar schemas."""

    def test_i32_bounds(self):
        assert to_json_schema(I32) == I32_SCHEMA

    def test_u32_bounds(self):
        assert to_json_schema(U32) == U32_SCHEMA

    def test_i64_is_string(self):
        schema = to_json_schema(I64)
        assert schema["type"] == "string"
        assert schema["$comment"] == "I64"
        assert "minimum" not in schema

    def test_binary(self):
        assert to_json_schema(BINARY) == {"type": "string", "$comment": "Binary", "contentEncoding": "base64"}

    def test_float_and_string(self):
        assert to_json_schema(F64) == {"type": "number", "$comment": "F64"}
        assert to_json_schema(STR) == {"type": "string", "$comment": "Str"}

    def test_unit(self):
        assert to_json_schema(UNIT)["type"] == "null"


class TestContainerSchemas:
    """Test container schemas."""

    def test_optional_widens_type(self):
        schema = to_json_schema(OptionalType(I32))
        assert schema["type"] == ["integer", "null"]
        assert schema["minimum"] == -(2**31)

    def test_optional_reference(self):
        schema = to_json_schema(OptionalType(TypeRef(("Point",))))
        assert schema == {"oneOf": [{"$ref": "#/$defs/Point"}, {"type": "null"}]}

    def test_nested_optional(self):
        schema = to_json_schema(OptionalType(OptionalType(STR)))
        assert schema["type"] == ["string", "null"]

    def test_object(self):
        assert to_json_schema(ObjectType(I32)) == {"type": "object", "additionalProperties": I32_SCHEMA}

    def test_list(self):
        assert to_json_schema(ListType(I32)) == {"type": "array", "items": I32_SCHEMA}

    def test_map(self):
        schema = to_json_schema(MapType(STR, I32))
        assert schema["type"] == "array"
        entry = schema["items"]
        assert entry["required"] == ["key", "value"]
        assert entry["properties"]["value"] == I32_SCHEMA

    def test_record(self):
        schema = to_json_schema(Record((Field("x", I32), Field("name", STR))))
        assert schema["type"] == "object"
        assert schema["required"] == ["x", "name"]
        assert schema["properties"]["x"] == I32_SCHEMA
        assert schema["additionalProperties"] is False

    def test_tuple(self):
        assert to_json_schema(tuple_type(I32, STR))["required"] == ["_1", "_2"]

    def test_annot(self):
        schema = to_json_schema(Annot("metres", F64))
        assert schema == {"type": "number", "$comment": "F64", "description": "metres"}

    def test_reference(self):
        assert to_json_schema(TypeRef(("simpleast", "Term"))) == {"$ref": "#/$defs/simpleast.Term"}

    def test_deterministic(self):
        t = MapType(STR, OptionalType(ListType(Annot("d", I64))))
        first, second = to_json_schema(t), to_json_schema(t)
        assert first == second
        assert json.dumps(first) == json.dumps(second)


class TestModuleSchema:
    """Test module documents."""

    def test_document_shape(self):
        doc = module_schema(build_shapes())
        assert doc["$schema"] == DRAFT_07
        assert list(doc["$defs"]) == ["Point", "Shape", "Circle", "Square", "Drawing"]

    def test_struct_entry(self):
        defs = module_schema(build_shapes())["$defs"]
        assert defs["Point"]["properties"] == {"x": I32_SCHEMA, "y": I32_SCHEMA}

    def test_sum_entry(self):
        defs = module_schema(build_shapes())["$defs"]
        assert defs["Shape"] == {"oneOf": [{"$ref": "#/$defs/Circle"}, {"$ref": "#/$defs/Square"}]}

    def test_variant_entry(self):
        circle = module_schema(build_shapes())["$defs"]["Circle"]
        assert circle["properties"]["_type"] == {"const": "Circle"}
        assert circle["required"] == ["_type", "r"]
        assert list(circle["properties"]) == ["_type", "r"]

    def test_custom_discriminator(self):
        config = CompilerConfig(discriminator="kind")
        circle = module_schema(build_shapes(config), config)["$defs"]["Circle"]
        assert circle["required"] == ["kind", "r"]

    def test_table_entry(self):
        ring = module_schema(build_graph_module())["$defs"]["Ring"]
        assert ring["required"] == ["O"]
        row = ring["properties"]["O"]["items"]
        assert row["required"] == ["_id", "next", "label"]
        assert row["properties"]["_id"] == U32_SCHEMA
        assert row["properties"]["next"] == U32_SCHEMA
        assert row["properties"]["label"] == {"type": "string", "$comment": "Str"}
        assert ring["properties"]["Label"]["items"]["required"] == ["_id"]

    def test_table_schema_function(self):
        graph = build_graph_module()["WeightedGraph"].spec
        schema = table_schema(graph)
        assert list(schema["properties"]) == ["V", "E", "Weight"]
        assert schema["properties"]["E"]["items"]["required"] == ["_id", "src", "tgt", "weight"]

    def test_imported_definitions(self):
        defs = module_schema(build_model())["$defs"]
        assert defs["Equation"]["properties"]["lhs"] == {"$ref": "#/$defs/simpleast.Term"}
        assert "simpleast.Term" in defs
        assert {"$ref": "#/$defs/simpleast.Plus"} in defs["simpleast.Term"]["oneOf"]
        plus = defs["simpleast.Plus"]
        assert plus["properties"]["terms"]["items"] == {"$ref": "#/$defs/simpleast.Term"}

    def test_every_reference_resolves(self):
        doc = module_schema(build_model())
        refs = collect_refs(doc)
        assert refs
        for ref in refs:
            assert ref[len("#/$defs/"):] in doc["$defs"]

    def test_transitive_imports(self):
        """top imports model, which alone imports simpleast."""
        top = parse_module("import model\nstruct Top { eq :: model.Equation }", "top",
                           imports={"model": build_model()})
        doc = module_schema(top)
        defs = doc["$defs"]
        assert defs["Top"]["properties"]["eq"] == {"$ref": "#/$defs/model.Equation"}
        assert defs["model.Equation"]["properties"]["lhs"] == {"$ref": "#/$defs/model.simpleast.Term"}
        assert {"$ref": "#/$defs/model.simpleast.Plus"} in defs["model.simpleast.Term"]["oneOf"]
        for ref in collect_refs(doc):
            assert ref[len("#/$defs/"):] in defs

    def test_shared_import_emitted_once(self):
        simpleast = build_simpleast()
        top = parse_module("import model\nimport simpleast\nalias T = simpleast.Term", "top",
                           imports={"model": build_model(simpleast), "simpleast": simpleast})
        defs = module_schema(top)["$defs"]
        assert defs["model.Equation"]["properties"]["lhs"] == {"$ref": "#/$defs/simpleast.Term"}
        assert not [key for key in defs if key.startswith("model.simpleast.")]

    def test_deterministic(self):
        assert module_schema(build_model()) == module_schema(build_model())


class TestSaveModuleSchema:
    """Test writing schema files."""

    def test_file_name_and_content(self, tmp_path):
        module = build_shapes()
        path = save_module_schema(module, str(tmp_path))
        assert path.endswith("shapes_schema.json")
        with open(path, encoding="utf-8") as f:
            assert json.load(f) == module_schema(module)

    def test_indent_from_config(self, tmp_path):
        path = save_module_schema(build_shapes(), str(tmp_path), CompilerConfig(schema_indent=4))
        with open(path, encoding="utf-8") as f:
            lines = f.read().splitlines()
        assert lines[1].startswith('    "$schema"')
