"""
plaixt Test Suite.

This package contains:
- unit/: Unit tests (parsers, resolver, validator, checks, query compiler)
- integration/: Integration tests (store roots on disk, query execution, HTTP API, CLI)
"""
