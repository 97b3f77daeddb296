"""
Tests for runtime code generation (compile_module).

These tests verify that classes, equality, readers and writers derived
from one declaration agree with each other and with the wire format.
"""

from collections import OrderedDict

import pytest
from intertypes.algebra import I32, STR, ListType, MapType, OptionalType, TypeRef
from intertypes.codegen import compile_module, python_annotation
from intertypes.config import CompilerConfig
from intertypes.errors import ConversionError, SchemaMismatchError, UnknownTagError
from intertypes.examples import SHAPES_SOURCE, build_graph_module, build_model, build_shapes
from intertypes.model import TableSpec
from intertypes.parser import parse_module
from intertypes.tables import MemoryTableStore


@pytest.fixture
def shapes():
    return compile_module(build_shapes())


class TestStructs:
    """Scenario A: struct Point { x :: I32, y :: I32 }."""

    def test_encode(self, shapes):
        assert shapes.encode(shapes.Point(1, 2)) == '{"x":1,"y":2}'

    def test_decode(self, shapes):
        assert shapes.decode('{"x": 1, "y": 2}', "Point") == shapes.Point(1, 2)

    def test_equality_is_field_wise(self, shapes):
        assert shapes.Point(1, 2) == shapes.Point(1, 2)
        assert shapes.Point(1, 2) != shapes.Point(2, 1)

    def test_exact_keys(self, shapes):
        with pytest.raises(SchemaMismatchError):
            shapes.decode('{"x": 1}', "Point")
        with pytest.raises(SchemaMismatchError):
            shapes.decode('{"x": 1, "y": 2, "z": 3}', "Point")

    def test_field_types_checked(self, shapes):
        with pytest.raises(ConversionError):
            shapes.decode('{"x": 1.5, "y": 2}', "Point")
        with pytest.raises(ConversionError):
            shapes.encode(shapes.Point("1", 2))

    def test_read_parsed_value(self, shapes):
        assert shapes.read("Point", {"x": 3, "y": 4}) == shapes.Point(3, 4)


class TestSums:
    """Scenario B: sum Shape { Circle(r :: F64) Square(s :: F64) }."""

    def test_encode_variant(self, shapes):
        assert shapes.encode(shapes.Circle(2.5)) == '{"_type":"Circle","r":2.5}'

    def test_decode_variant(self, shapes):
        value = shapes.decode('{"_type": "Circle", "r": 2.5}', "Shape")
        assert value == shapes.Circle(2.5)
        assert isinstance(value, shapes.Shape)

    def test_discriminator_first_on_named_type(self, shapes):
        assert shapes.encode(shapes.Square(2.0), "Shape") == '{"_type":"Square","s":2.0}'

    def test_unknown_tag(self, shapes):
        with pytest.raises(UnknownTagError) as exc:
            shapes.decode('{"_type": "Triangle"}', "Shape")
        assert exc.value.tag == "Triangle"
        assert exc.value.tags == ("Circle", "Square")

    def test_variant_reader_checks_tag(self, shapes):
        """Reading one variant by name rejects documents tagged as another."""
        with pytest.raises(UnknownTagError) as exc:
            shapes.decode('{"_type": "Square", "r": 2.5}', "Circle")
        assert exc.value.tag == "Square"
        assert exc.value.tags == ("Circle",)
        assert shapes.decode('{"_type": "Circle", "r": 2.5}', "Circle") == shapes.Circle(2.5)

    def test_missing_discriminator(self, shapes):
        with pytest.raises(SchemaMismatchError):
            shapes.decode('{"r": 2.5}', "Shape")

    def test_variants_differ(self, shapes):
        assert shapes.Circle(1.0) != shapes.Square(1.0)

    def test_sum_class(self, shapes):
        assert shapes.Shape.VARIANTS == ("Circle", "Square")
        assert issubclass(shapes.Square, shapes.Shape)

    def test_wrong_variant_for_sum(self, shapes):
        with pytest.raises(ConversionError):
            shapes.encode(shapes.Point(1, 2), "Shape")

    def test_custom_discriminator(self):
        config = CompilerConfig(discriminator="kind")
        compiled = compile_module(parse_module(SHAPES_SOURCE, "shapes", config=config), config)
        text = compiled.encode(compiled.Circle(2.5))
        assert text == '{"kind":"Circle","r":2.5}'
        assert compiled.decode(text, "Shape") == compiled.Circle(2.5)


class TestNestedValues:
    """Test declarations holding containers and references."""

    def test_drawing_round_trip(self, shapes):
        drawing = shapes.Drawing(
            title="demo",
            origin=shapes.Point(0, 0),
            shapes=[shapes.Circle(1.0), shapes.Square(2.0)],
            tags=OrderedDict([("z", 1), ("a", 2)]),
        )
        text = shapes.encode(drawing)
        assert text == (
            '{"title":"demo","origin":{"x":0,"y":0},'
            '"shapes":[{"_type":"Circle","r":1.0},{"_type":"Square","s":2.0}],'
            '"tags":[{"key":"z","value":"1"},{"key":"a","value":"2"}]}'
        )
        assert shapes.decode(text, "Drawing") == drawing

    def test_optional_reference(self, shapes):
        drawing = shapes.Drawing(title="t", origin=None, shapes=[], tags=OrderedDict())
        assert shapes.decode(shapes.encode(drawing), "Drawing") == drawing

    def test_alias(self):
        compiled = compile_module(parse_module("alias Names = List[Str]", "names"))
        assert compiled.Names == ListType(STR)
        assert compiled.decode('["a", "b"]', "Names") == ["a", "b"]
        assert compiled.encode(["a"], "Names") == '["a"]'


class TestImports:
    """Test modules importing other modules (simpleast / model)."""

    def test_recursive_term(self):
        compiled = compile_module(build_model())
        ast = compiled.imports["simpleast"]
        t = ast.Plus([ast.Constant(ast.ConstInt(1)), ast.Constant(ast.ConstInt(2))])
        s = ast.encode(t)
        assert s == (
            '{"_type":"Plus","terms":['
            '{"_type":"Constant","c":{"_type":"ConstInt","value":"1"}},'
            '{"_type":"Constant","c":{"_type":"ConstInt","value":"2"}}]}'
        )
        assert ast.decode(s, "Term") == t

    def test_model_round_trip(self):
        compiled = compile_module(build_model())
        ast = compiled.imports["simpleast"]
        t = ast.Plus([ast.Constant(ast.ConstInt(1)), ast.Var("x")])
        m = compiled.Model(["x"], [compiled.Equation(t, t)])
        assert compiled.decode(compiled.encode(m), "Model") == m

    def test_imported_names_qualified(self):
        compiled = compile_module(build_model())
        ast = compiled.imports["simpleast"]
        assert compiled.decode('{"_type": "Var", "name": "y"}', "simpleast.Term") == ast.Var("y")

    def test_shared_cache(self):
        """Modules compiled with one cache share imported classes."""
        model = build_model()
        cache = {}
        ast = compile_module(model.imports["simpleast"], cache=cache)
        compiled = compile_module(model, cache=cache)
        assert compiled.imports["simpleast"] is ast


class TestTables:
    """Test declared table schemas."""

    def test_ring_round_trip(self):
        graphs = compile_module(build_graph_module())
        assert isinstance(graphs.Ring, TableSpec)
        store = MemoryTableStore(graphs.Ring)
        for label in ("a", "b", "c"):
            store.add_row("O", label=label)
        for i in (1, 2, 3):
            store.set_cell(i, "next", i % 3 + 1)

        text = graphs.encode(store)
        restored = graphs.decode(text, "Ring")
        assert restored == store
        assert graphs.encode(restored, "Ring") == text

    def test_non_table_value(self):
        graphs = compile_module(build_graph_module())
        with pytest.raises(ConversionError):
            graphs.encode({"O": []}, "Ring")


class TestCompiledModule:
    """Test the namespace surface."""

    def test_namespace(self, shapes):
        assert "Point" in shapes
        assert "Circle" in shapes
        assert shapes["Point"] is shapes.Point
        assert shapes.name == "shapes"

    def test_unknown_attribute(self, shapes):
        with pytest.raises(AttributeError):
            shapes.Triangle

    def test_python_annotation(self):
        assert python_annotation(OptionalType(I32)) == "Optional[int]"
        assert python_annotation(MapType(STR, ListType(I32))) == "OrderedDict[str, List[int]]"
        assert python_annotation(TypeRef(("simpleast", "Term"))) == "simpleast.Term"
