"""
ChainSync Test Suite.

This package contains:
- unit/: Unit tests (SQLite in a temporary directory)
- integration/: Integration tests (HTTP app and concurrent writers)
"""
