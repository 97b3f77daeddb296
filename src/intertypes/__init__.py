"""
intertypes: schema algebra and multi-target compiler

Declared data shapes (structs, tagged unions, aliases, table schemas) are
parsed into one canonical IR. Every artifact is derived from that IR:
    - a JSON codec (codec, tables)
    - JSON Schema documents (backends.json_schema)
    - Python classes with readers and writers, either built at runtime
      (codegen) or emitted as source (backends.python_source)

ARCHITECTURAL GUARANTEE:
------------------------
The IR (algebra, model) contains ZERO knowledge of:
    - JSON text
    - JSON Schema
    - Python code generation

All transformations happen in the layers that consume it.
A finalized Module never changes; artifacts are computed once and reused.
"""

__version__ = "0.1.0"
