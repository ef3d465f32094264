"""Pytest configuration and fixtures."""

import asyncio

import pytest


@pytest.fixture
def eventually():
    """Await until ``predicate()`` is true, yielding to the event loop in between."""

    async def _eventually(predicate, timeout: float = 1.0) -> None:
        async def _wait() -> None:
            while not predicate():
                await asyncio.sleep(0.001)

        await asyncio.wait_for(_wait(), timeout)

    return _eventually
