"""
Tests for the table codec and the in-memory table store.

Scenario used throughout: object kind `O` with a self-referencing foreign
key `next` and a string attribute `label`.
"""

import io
import json

import pytest
from intertypes.algebra import F64, STR
from intertypes.codec import DEFAULT_CODEC
from intertypes.errors import ConversionError, SchemaMismatchError
from intertypes.model import Attr, AttrType, Hom, TableSpec
from intertypes.tables import MemoryTableStore, read_tables, write_tables

RING = TableSpec(
    objects=("O",),
    homs=(Hom("next", "O", "O"),),
    attr_types=(AttrType("Label", STR),),
    attrs=(Attr("label", "O", "Label"),),
)

GRAPH = TableSpec(
    objects=("V", "E"),
    homs=(Hom("src", "E", "V"), Hom("tgt", "E", "V")),
    attr_types=(AttrType("Weight", F64),),
    attrs=(Attr("weight", "E", "Weight"),),
)


def build_ring() -> MemoryTableStore:
    store = MemoryTableStore(RING)
    for label in ("a", "b", "c"):
        store.add_row("O", label=label)
    for i in (1, 2, 3):
        store.set_cell(i, "next", i % 3 + 1)
    return store


def encode(store) -> str:
    out = io.StringIO()
    write_tables(out, store, DEFAULT_CODEC)
    return out.getvalue()


def decode(text: str, spec: TableSpec) -> MemoryTableStore:
    store = MemoryTableStore(spec)
    read_tables(store, json.loads(text), DEFAULT_CODEC)
    return store


class TestMemoryTableStore:
    """Test the reference store."""

    def test_rows_are_one_based(self):
        store = MemoryTableStore(RING)
        assert store.allocate_rows("O", 2) == [1, 2]
        assert store.allocate_rows("O", 1) == [3]
        assert list(store.live_rows("O")) == [1, 2, 3]

    def test_unset_cells(self):
        store = MemoryTableStore(RING)
        row = store.add_row("O")
        assert store.get_cell(row, "next") == 0
        assert store.get_cell(row, "label") is None

    def test_introspection(self):
        store = MemoryTableStore(GRAPH)
        assert store.object_kinds() == ["V", "E"]
        assert store.attr_type_kinds() == ["Weight"]
        assert store.foreign_keys("E") == ["src", "tgt"]
        assert store.attributes("E") == [("weight", F64)]

    def test_unknown_column(self):
        store = MemoryTableStore(RING)
        row = store.add_row("O")
        with pytest.raises(KeyError):
            store.get_cell(row, "prev")

    def test_row_out_of_range(self):
        store = MemoryTableStore(RING)
        with pytest.raises(IndexError):
            store.set_cell(1, "label", "a")

    def test_foreign_key_target_out_of_range(self):
        store = MemoryTableStore(RING)
        row = store.add_row("O")
        with pytest.raises(IndexError):
            store.set_cell(row, "next", 2)

    def test_equality(self):
        assert build_ring() == build_ring()
        other = build_ring()
        other.set_cell(1, "label", "z")
        assert other != build_ring()


class TestWriteTables:
    """Test table encoding."""

    def test_ring_document(self):
        assert json.loads(encode(build_ring())) == {
            "O": [
                {"_id": 1, "next": 2, "label": "a"},
                {"_id": 2, "next": 3, "label": "b"},
                {"_id": 3, "next": 1, "label": "c"},
            ],
            "Label": [],
        }

    def test_property_order(self):
        """`_id` first, then foreign keys, then attributes."""
        text = encode(build_ring())
        assert text.startswith('{"O":[{"_id":1,"next":2,"label":"a"}')

    def test_attribute_pools_written(self):
        store = MemoryTableStore(GRAPH)
        store.allocate_rows("Weight", 2)
        assert json.loads(encode(store))["Weight"] == [{"_id": 1}, {"_id": 2}]

    def test_unset_attribute_cannot_be_written(self):
        store = MemoryTableStore(RING)
        store.add_row("O")
        with pytest.raises(ConversionError):
            encode(store)


class TestReadTables:
    """Test table decoding."""

    def test_ring_round_trip(self):
        original = build_ring()
        restored = decode(encode(original), RING)
        assert restored.nrows("O") == 3
        assert [restored.get_cell(i, "next") for i in (1, 2, 3)] == [2, 3, 1]
        assert [restored.get_cell(i, "label") for i in (1, 2, 3)] == ["a", "b", "c"]
        assert restored == original

    def test_forward_references(self):
        text = '{"O": [{"_id": 1, "next": 2, "label": "a"}, {"_id": 2, "next": 1, "label": "b"}]}'
        store = decode(text, RING)
        assert store.get_cell(1, "next") == 2

    def test_rows_in_any_order(self):
        text = '{"O": [{"_id": 2, "next": 1, "label": "b"}, {"_id": 1, "next": 2, "label": "a"}]}'
        store = decode(text, RING)
        assert store.get_cell(1, "label") == "a"

    def test_lenient_ids(self):
        text = '{"O": [{"_id": "1", "next": "1", "label": "a"}]}'
        assert decode(text, RING).get_cell(1, "next") == 1

    def test_ids_are_32_bit(self):
        with pytest.raises(ConversionError):
            decode('{"O": [{"_id": 1, "next": 4294967296, "label": "a"}]}', RING)
        with pytest.raises(ConversionError):
            decode('{"O": [{"_id": -1, "next": 1, "label": "a"}]}', RING)

    def test_foreign_key_outside_target_rows(self):
        with pytest.raises(SchemaMismatchError):
            decode('{"O": [{"_id": 1, "next": 5, "label": "a"}]}', RING)

    def test_foreign_key_into_other_kind(self):
        """`src` targets V; a row count of E does not make it valid."""
        text = '{"V": [], "E": [{"_id": 1, "src": 1, "tgt": 1, "weight": 1.0}]}'
        with pytest.raises(SchemaMismatchError):
            decode(text, GRAPH)

    def test_unset_foreign_key_round_trip(self):
        store = MemoryTableStore(RING)
        store.add_row("O", label="a")
        restored = decode(encode(store), RING)
        assert restored.get_cell(1, "next") == 0
        assert restored == store

    def test_pools_allocated(self):
        text = '{"V": [], "E": [], "Weight": [{"_id": 1}, {"_id": 2}, {"_id": 3}]}'
        assert decode(text, GRAPH).nrows("Weight") == 3

    def test_graph_round_trip(self):
        store = MemoryTableStore(GRAPH)
        a = store.add_row("V")
        b = store.add_row("V")
        store.add_row("E", src=a, tgt=b, weight=0.5)
        store.add_row("E", src=b, tgt=a, weight=1.5)
        assert decode(encode(store), GRAPH) == store

    def test_missing_column(self):
        with pytest.raises(SchemaMismatchError):
            decode('{"O": [{"_id": 1, "label": "a"}]}', RING)

    def test_extra_column(self):
        with pytest.raises(SchemaMismatchError):
            decode('{"O": [{"_id": 1, "next": 1, "label": "a", "prev": 1}]}', RING)

    def test_id_out_of_range(self):
        with pytest.raises(SchemaMismatchError):
            decode('{"O": [{"_id": 2, "next": 1, "label": "a"}]}', RING)

    def test_duplicate_id(self):
        text = '{"O": [{"_id": 1, "next": 1, "label": "a"}, {"_id": 1, "next": 1, "label": "b"}]}'
        with pytest.raises(SchemaMismatchError):
            decode(text, RING)

    def test_missing_kind(self):
        with pytest.raises(SchemaMismatchError):
            decode('{}', RING)

    def test_unknown_kind(self):
        with pytest.raises(SchemaMismatchError):
            decode('{"O": [], "P": []}', RING)

    def test_attribute_type_checked(self):
        with pytest.raises(ConversionError):
            decode('{"O": [{"_id": 1, "next": 1, "label": 7}]}', RING)

    def test_not_an_object(self):
        with pytest.raises(ConversionError):
            decode('[]', RING)
