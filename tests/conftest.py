"""Shared test fixtures."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture
def db() -> AsyncMock:
    """One mocked AsyncSession; every session_factory() call yields it."""
    return AsyncMock()


@pytest.fixture
def session_factory(db: AsyncMock):
    @asynccontextmanager
    async def factory():
        yield db

    return factory


@pytest.fixture
def notifier() -> MagicMock:
    n = MagicMock()
    n.publish = AsyncMock(return_value=True)
    n.invalidate = AsyncMock(return_value=True)
    n.write_status = AsyncMock(return_value=True)
    n.read_status = AsyncMock(return_value=None)
    n.set_value = AsyncMock(return_value=True)
    n.get_value = AsyncMock(return_value=None)
    return n
