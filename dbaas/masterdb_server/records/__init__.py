"""
Generic record operations for MasterDB schemas.

- ReferenceValidator: MASTER field existence and cardinality checks
- RecordEngine: create/list/get/update/remove over any registered schema
"""

from .engine import ListOptions, RecordEngine
from .references import ReferenceValidator

__all__ = ["ListOptions", "RecordEngine", "ReferenceValidator"]
