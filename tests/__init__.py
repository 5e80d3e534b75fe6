"""
Keeper SDK Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies, kazoo mocked)
- integration/: Integration tests (KeeperClient over the in-memory driver)
"""
