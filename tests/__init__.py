"""
Campus EAV Test Suite.

This package contains:
- unit/: Unit tests (stores, projection, service against temporary SQLite files)
- integration/: Integration tests (HTTP gateway and command-line tool)
"""
