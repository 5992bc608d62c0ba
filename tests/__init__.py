"""
Entity Server Test Suite.

This package contains:
- unit/: Unit tests (no storage)
- integration/: Integration tests (SQLite store, service and version manager)
"""
