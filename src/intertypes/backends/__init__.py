"""Backends for intertypes artifact generation (JSON Schema, Python source)."""

from .json_schema import module_schema, save_module_schema, to_json_schema
from .python_source import generate_python_source, save_python_module

__all__ = [
    "to_json_schema",
    "module_schema",
    "save_module_schema",
    "generate_python_source",
    "save_python_module",
]
