"""
MasterDB Server - Metadata-driven master data document engine.

Operators register record shapes (schemas) at runtime and then create, list,
read, update and delete records of those shapes through one generic surface.
Schemas may reference each other through MASTER fields, which are checked for
referential integrity on every write.

Architecture:
    ┌─────────────┐     ┌──────────────────┐     ┌─────────────────┐
    │  HTTP API   │────▶│  SchemaRegistry  │────▶│  AccessorCache  │
    │  (FastAPI)  │     └────────┬─────────┘     └────────┬────────┘
    └──────┬──────┘              │                        │
           │                     ▼                        ▼
           │            ┌──────────────────┐     ┌─────────────────┐
           └───────────▶│   RecordEngine   │────▶│    Accessor     │
                        └────────┬─────────┘     └────────┬────────┘
                                 │                        │
                                 ▼                        ▼
                        ┌──────────────────┐     ┌─────────────────┐
                        │ReferenceValidator│     │  DocumentStore  │
                        └──────────────────┘     │ (SQLite/memory) │
                                                 └─────────────────┘

Invariants:
    - Persisted schema metadata is the source of truth; the accessor cache
      is rebuilt from it at startup
    - Schema names are case-insensitive and stored lower-cased
    - Record identifiers are generated server-side and never accepted from callers
    - MASTER values always refer to records that existed at write time

How to change safely:
    - Keep the persisted schema document shape ({"schema": {...}}) stable
    - New field types need coercion, accessor encoding and tests together
    - Schema events are consumed by other instances; keep them backward compatible
"""

from ._version import __version__

__all__ = ["__version__"]
