"""Pytest configuration and shared fixtures."""

import pytest

from devtools_dispatch.protocol import SchemaTable, default_schema


@pytest.fixture(scope="module")
def anyio_backend():
    """Run async tests on asyncio; the dispatcher is asyncio-only."""
    return "asyncio"


@pytest.fixture
def schema() -> SchemaTable:
    """The built-in domain catalogue."""
    return default_schema()
