"""
Table codec: JSON encoding of table-structured data.

A table instance has object kinds (tables of rows), foreign keys between
kinds (integer row indices), typed per-row attributes, and attribute-type
pools (id spaces for symbolic attribute placeholders).

Wire format:
    {
      "<kind>": [{"_id": 1, "<fk>": 2, "<attr>": <value>}, ...],
      ...
      "<attr type>": [{"_id": 1}, ...],
      ...
    }

The codec never owns storage. It talks to a TableStore, which the storage
engine implements; MemoryTableStore is a small reference store used when
decoding a declared schema and in tests.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Tuple

from intertypes.algebra import I64, U32, InterType
from intertypes.codec import JsonCodec, check_keys, read_primitive
from intertypes.errors import ConversionError, SchemaMismatchError
from intertypes.model import TableSpec

logger = logging.getLogger(__name__)

ID = "_id"


class TableStore(ABC):
    """
    Introspection and mutation contract of a table instance.

    Column names (foreign keys and attributes) are unique across the
    whole schema, so a cell is addressed by (row, column name).
    """

    @abstractmethod
    def object_kinds(self) -> List[str]:
        """Names of the object kinds, in schema order."""

    @abstractmethod
    def attr_type_kinds(self) -> List[str]:
        """Names of the attribute types, in schema order."""

    @abstractmethod
    def foreign_keys(self, kind: str) -> List[str]:
        """Names of the foreign keys leaving `kind`."""

    @abstractmethod
    def attributes(self, kind: str) -> List[Tuple[str, InterType]]:
        """(name, native type) of each attribute of `kind`."""

    @abstractmethod
    def live_rows(self, kind: str) -> Iterable[int]:
        """Indices of the rows (or pool slots) of `kind`."""

    @abstractmethod
    def allocate_rows(self, kind: str, n: int) -> List[int]:
        """Add `n` rows (or pool slots) to `kind`; return their indices."""

    @abstractmethod
    def get_cell(self, row: int, field: str) -> Any:
        pass

    @abstractmethod
    def set_cell(self, row: int, field: str, value: Any) -> None:
        pass


class MemoryTableStore(TableStore):
    """
    Dense in-memory TableStore.

    Rows of each kind are numbered 1..n. A foreign key that was never set
    holds 0; an attribute that was never set holds None.
    """

    def __init__(self, spec: TableSpec):
        self.spec = spec
        self._counts: Dict[str, int] = {ob: 0 for ob in spec.objects}
        self._counts.update({at.name: 0 for at in spec.attr_types})
        self._cells: Dict[str, Dict[int, Any]] = {h.name: {} for h in spec.homs}
        self._cells.update({a.name: {} for a in spec.attrs})
        self._domains: Dict[str, str] = {h.name: h.dom for h in spec.homs}
        self._domains.update({a.name: a.dom for a in spec.attrs})

    def object_kinds(self) -> List[str]:
        return list(self.spec.objects)

    def attr_type_kinds(self) -> List[str]:
        return [at.name for at in self.spec.attr_types]

    def foreign_keys(self, kind: str) -> List[str]:
        return [h.name for h in self.spec.homs_from(kind)]

    def attributes(self, kind: str) -> List[Tuple[str, InterType]]:
        return self.spec.attrs_from(kind)

    def nrows(self, kind: str) -> int:
        return self._counts[kind]

    def live_rows(self, kind: str) -> Iterable[int]:
        return range(1, self._counts[kind] + 1)

    def allocate_rows(self, kind: str, n: int) -> List[int]:
        start = self._counts[kind]
        self._counts[kind] = start + n
        return list(range(start + 1, start + n + 1))

    def add_row(self, kind: str, **cells: Any) -> int:
        """Allocate one row of `kind` and set the given cells on it."""
        (row,) = self.allocate_rows(kind, 1)
        for name, value in cells.items():
            self.set_cell(row, name, value)
        return row

    def _check_row(self, row: int, field: str) -> str:
        if field not in self._domains:
            raise KeyError(f"no column named {field}")
        kind = self._domains[field]
        if not 1 <= row <= self._counts[kind]:
            raise IndexError(f"row {row} out of range for {kind} ({self._counts[kind]} rows)")
        return kind

    def get_cell(self, row: int, field: str) -> Any:
        self._check_row(row, field)
        default = 0 if self.spec.hom(field) is not None else None
        return self._cells[field].get(row, default)

    def set_cell(self, row: int, field: str, value: Any) -> None:
        self._check_row(row, field)
        hom = self.spec.hom(field)
        if hom is not None and not 0 <= value <= self._counts[hom.codom]:
            raise IndexError(f"{field} target {value} out of range for {hom.codom}")
        self._cells[field][row] = value

    def _snapshot(self):
        cells = {
            field: [self.get_cell(row, field) for row in self.live_rows(self._domains[field])]
            for field in self._cells
        }
        return self._counts, cells

    def __eq__(self, other):
        if not isinstance(other, MemoryTableStore):
            return NotImplemented
        return self.spec == other.spec and self._snapshot() == other._snapshot()

    def __repr__(self):
        counts = ", ".join(f"{k}={v}" for k, v in self._counts.items())
        return f"MemoryTableStore({counts})"


def _read_index(codec: JsonCodec, value: Any, depth: int) -> int:
    """Row index: digit strings accepted like I64, range bounded like U32."""
    return read_primitive(U32, codec.read(I64, value, depth))


def read_tables(store: TableStore, value: Any, codec: JsonCodec, depth: int = 0) -> TableStore:
    """
    Populate an empty `store` from a parsed JSON table document.

    Rows are allocated for every kind before any cell is set, so foreign
    keys may point forwards. A failed read leaves `store` partially
    populated.

    Raises:
        ConversionError: If the document or a row is not a JSON object,
            or an index is not an unsigned 32-bit integer
        SchemaMismatchError: On a missing kind, a row with missing or
            extra columns, an `_id` outside the rows this read allocated,
            or a foreign key naming no row of its target kind (0 is unset)
    """
    if not isinstance(value, dict):
        raise ConversionError("table document object", value)

    kinds = store.object_kinds()
    pools = store.attr_type_kinds()
    missing = [k for k in kinds if k not in value]
    extra = [k for k in value if k not in kinds and k not in pools]
    if missing or extra:
        raise SchemaMismatchError(set(kinds), set(value), f"missing {missing}, unexpected {extra}")

    allocated: Dict[str, List[int]] = {}
    for kind in kinds:
        rows = value[kind]
        if not isinstance(rows, list):
            raise ConversionError(f"array of {kind} rows", rows)
        allocated[kind] = store.allocate_rows(kind, len(rows))
    for pool in pools:
        if pool in value:
            slots = value[pool]
            if not isinstance(slots, list):
                raise ConversionError(f"array of {pool} slots", slots)
            store.allocate_rows(pool, len(slots))

    for kind in kinds:
        fks = store.foreign_keys(kind)
        attrs = store.attributes(kind)
        names = [ID] + fks + [name for name, _ in attrs]
        valid = set(allocated[kind])
        seen = set()
        for row in value[kind]:
            if not isinstance(row, dict):
                raise ConversionError(f"{kind} row object", row)
            check_keys(names, row)
            i = _read_index(codec, row[ID], depth + 1)
            if i not in valid or i in seen:
                raise SchemaMismatchError(sorted(valid), i, f"{ID} outside the rows allocated for {kind}")
            seen.add(i)
            for fk in fks:
                target = _read_index(codec, row[fk], depth + 1)
                try:
                    store.set_cell(i, fk, target)
                except IndexError as e:
                    raise SchemaMismatchError([fk], target, f"{fk} names no row of its target kind") from e
            for name, native in attrs:
                store.set_cell(i, name, codec.read(native, row[name], depth + 1))

    logger.debug("read %s", ", ".join(f"{len(allocated[k])} {k}" for k in kinds))
    return store


def write_tables(out, store: TableStore, codec: JsonCodec, depth: int = 0) -> None:
    """
    Write `store` as a JSON table document.

    Rows appear in ascending index order; `_id` and foreign keys are bare
    32-bit numbers, attributes use their declared types.
    """
    out.write("{")
    first = True
    for kind in store.object_kinds():
        if not first:
            out.write(",")
        first = False
        fks = store.foreign_keys(kind)
        attrs = store.attributes(kind)
        out.write(json.dumps(kind) + ":[")
        for n, i in enumerate(sorted(store.live_rows(kind))):
            if n:
                out.write(",")
            items = [(ID, i, U32)]
            items += [(fk, store.get_cell(i, fk), U32) for fk in fks]
            items += [(name, store.get_cell(i, name), native) for name, native in attrs]
            codec.write_fields(out, items, depth + 1)
        out.write("]")

    for pool in store.attr_type_kinds():
        if not first:
            out.write(",")
        first = False
        out.write(json.dumps(pool) + ":[")
        for n, i in enumerate(sorted(store.live_rows(pool))):
            if n:
                out.write(",")
            codec.write_fields(out, [(ID, i, U32)], depth + 1)
        out.write("]")
    out.write("}")


__all__ = ["TableStore", "MemoryTableStore", "read_tables", "write_tables", "ID"]
