"""
Runtime accessors for MasterDB schemas.

This package turns schema definitions into handles that store and query
records of that shape:
- builder: Slot layout and the Accessor itself
- cache: The per-instance AccessorCache
"""

from .builder import Accessor, Slot, build_accessor, build_slots, encode_datetime
from .cache import AccessorCache, CacheEntry

__all__ = [
    "Accessor",
    "Slot",
    "build_accessor",
    "build_slots",
    "encode_datetime",
    "AccessorCache",
    "CacheEntry",
]
