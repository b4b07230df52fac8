"""
CLI tools for MasterDB administration.

This module provides command-line tools for:
- schema: List, export, import and migrate schema definitions

Invariants:
    - Tools work without a running server (they open the store directly)
    - Operations are idempotent where possible
"""

from .schema_cli import MigrationResult, SchemaCLI, dependency_order

__all__ = ["MigrationResult", "SchemaCLI", "dependency_order"]
