"""
MasterDB Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (service, REST API, SQLite, schema CLI)
"""
