"""
Tests for the Python source generator.

Generated modules are written to a temporary directory and imported, so
these tests check both the text and the behaviour of the emitted code.
"""

import importlib
import sys

import pytest
from intertypes.algebra import I32, STR, ListType, OptionalType, TypeRef
from intertypes.backends.python_source import generate_python_source, render_type, save_python_module
from intertypes.codegen import compile_module
from intertypes.config import CompilerConfig
from intertypes.errors import ConversionError, SchemaMismatchError, UnknownTagError
from intertypes.examples import GRAPHS_SOURCE, SHAPES_SOURCE
from intertypes.parser import parse_module
from intertypes.tables import MemoryTableStore


@pytest.fixture
def load_generated(tmp_path, monkeypatch):
    """Save modules as source files and import the last one."""
    monkeypatch.syspath_prepend(str(tmp_path))
    loaded = []

    def load(*modules, config=None):
        for module in modules:
            save_python_module(module, str(tmp_path), config or CompilerConfig())
            loaded.append(module.name)
        importlib.invalidate_caches()
        return importlib.import_module(modules[-1].name)

    yield load
    for name in loaded:
        sys.modules.pop(name, None)


class TestRenderType:
    """Test IR expressions in generated code."""

    def test_primitive(self):
        assert render_type(I32) == "_ir.I32"

    def test_nested(self):
        assert render_type(OptionalType(ListType(STR))) == "_ir.OptionalType(_ir.ListType(_ir.STR))"

    def test_reference(self):
        assert render_type(TypeRef(("base", "Point"))) == "_ir.TypeRef(('base', 'Point'))"


class TestGeneratedText:
    """Test the emitted source text."""

    def test_compiles(self):
        source = generate_python_source(parse_module(SHAPES_SOURCE, "gen_shapes"))
        compile(source, "gen_shapes.py", "exec")

    def test_declares_classes_and_functions(self):
        source = generate_python_source(parse_module(SHAPES_SOURCE, "gen_shapes"))
        assert "class Point:" in source
        assert "class Shape:" in source
        assert "class Circle(Shape):" in source
        assert "def read_Shape(value, depth=0):" in source
        assert "def write_Drawing(out, value, depth=0):" in source

    def test_variant_order_in_reader(self):
        source = generate_python_source(parse_module(SHAPES_SOURCE, "gen_shapes"))
        assert source.index("tag == 'Circle'") < source.index("tag == 'Square'")

    def test_imports_emitted(self):
        leaf = parse_module("struct Leaf { v :: I32 }", "gen_leaf")
        box = parse_module("import gen_leaf\nstruct Box { leaf :: gen_leaf.Leaf }", "gen_box", imports={"gen_leaf": leaf})
        source = generate_python_source(box)
        assert "import gen_leaf\n" in source
        assert "gen_leaf.BINDINGS.items()" in source

    def test_deterministic(self):
        module = parse_module(SHAPES_SOURCE, "gen_shapes")
        assert generate_python_source(module) == generate_python_source(module)

    def test_file_name(self, tmp_path):
        path = save_python_module(parse_module(SHAPES_SOURCE, "gen_shapes"), str(tmp_path))
        assert path.endswith("gen_shapes.py")


class TestGeneratedModule:
    """Test importing and using generated code."""

    def test_struct(self, load_generated):
        gen = load_generated(parse_module(SHAPES_SOURCE, "gen_shapes"))
        assert gen.encode(gen.Point(1, 2)) == '{"x":1,"y":2}'
        assert gen.decode('{"x": 1, "y": 2}', "Point") == gen.Point(1, 2)
        with pytest.raises(SchemaMismatchError):
            gen.decode('{"x": 1}', "Point")

    def test_sum(self, load_generated):
        gen = load_generated(parse_module(SHAPES_SOURCE, "gen_shapes"))
        assert gen.encode(gen.Circle(2.5)) == '{"_type":"Circle","r":2.5}'
        assert gen.decode('{"_type": "Square", "s": 1.0}', "Shape") == gen.Square(1.0)
        assert gen.Shape.VARIANTS == ("Circle", "Square")

    def test_unknown_tag(self, load_generated):
        gen = load_generated(parse_module(SHAPES_SOURCE, "gen_shapes"))
        with pytest.raises(UnknownTagError):
            gen.decode('{"_type": "Triangle"}', "Shape")

    def test_variant_reader_checks_tag(self, load_generated):
        gen = load_generated(parse_module(SHAPES_SOURCE, "gen_shapes"))
        with pytest.raises(UnknownTagError) as exc:
            gen.decode('{"_type": "Square", "r": 2.5}', "Circle")
        assert exc.value.tag == "Square"
        assert gen.decode('{"_type": "Circle", "r": 2.5}', "Circle") == gen.Circle(2.5)

    def test_writer_checks_class(self, load_generated):
        gen = load_generated(parse_module(SHAPES_SOURCE, "gen_shapes"))
        with pytest.raises(ConversionError):
            gen.encode(gen.Circle(1.0), TypeRef(("Point",)))

    def test_matches_runtime_encoding(self, load_generated):
        module = parse_module(SHAPES_SOURCE, "gen_shapes")
        gen = load_generated(module)
        rt = compile_module(module)

        generated = gen.Drawing("d", gen.Point(1, 2), [gen.Circle(1.0), gen.Square(2.0)], {"a": 1})
        runtime = rt.Drawing("d", rt.Point(1, 2), [rt.Circle(1.0), rt.Square(2.0)], {"a": 1})
        text = gen.encode(generated)
        assert text == rt.encode(runtime)
        assert rt.decode(text, "Drawing") == runtime
        assert gen.decode(text, "Drawing") == generated

    def test_custom_discriminator(self, load_generated):
        config = CompilerConfig(discriminator="kind")
        gen = load_generated(parse_module(SHAPES_SOURCE, "gen_shapes_kind", config=config), config=config)
        assert gen.encode(gen.Circle(2.5)) == '{"kind":"Circle","r":2.5}'

    def test_alias(self, load_generated):
        gen = load_generated(parse_module("alias Names = List[Str]", "gen_names"))
        assert gen.Names == ListType(STR)
        assert gen.decode('["a"]', "Names") == ["a"]

    def test_imported_module(self, load_generated):
        leaf = parse_module("struct Leaf { v :: I32 }", "gen_leaf")
        box = parse_module("import gen_leaf\nstruct Box { leaf :: gen_leaf.Leaf }", "gen_box", imports={"gen_leaf": leaf})
        gen = load_generated(leaf, box)
        gen_leaf = sys.modules["gen_leaf"]

        value = gen.Box(gen_leaf.Leaf(7))
        assert gen.encode(value) == '{"leaf":{"v":7}}'
        assert gen.decode('{"leaf": {"v": 7}}', "Box") == value
        assert gen.decode('{"v": 3}', "gen_leaf.Leaf") == gen_leaf.Leaf(3)

    def test_table(self, load_generated):
        gen = load_generated(parse_module(GRAPHS_SOURCE, "gen_graphs"))
        store = MemoryTableStore(gen.Ring)
        store.add_row("O", label="a")
        store.add_row("O", label="b")
        store.set_cell(1, "next", 2)
        store.set_cell(2, "next", 1)

        text = gen.encode(store, TypeRef(("Ring",)))
        assert text == '{"O":[{"_id":1,"next":2,"label":"a"},{"_id":2,"next":1,"label":"b"}],"Label":[]}'
        assert gen.decode(text, "Ring") == store

    def test_exports(self, load_generated):
        gen = load_generated(parse_module(SHAPES_SOURCE, "gen_shapes"))
        assert set(gen.__all__) >= {"Point", "Shape", "Circle", "Square", "Drawing", "encode", "decode"}
