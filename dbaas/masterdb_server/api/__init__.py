"""
API module for MasterDB server.

This module provides the external interface:
- HTTP server (FastAPI REST API over schemas and records)

Invariants:
    - Handlers contain no business rules; they translate HTTP to
      registry and record engine calls
    - Engine errors map to HTTP statuses in one place

How to change safely:
    - Add new routes, don't change the meaning of existing ones
"""

from .http_server import create_app, router, status_for

__all__ = [
    "create_app",
    "router",
    "status_for",
]
