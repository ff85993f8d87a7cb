"""Pytest configuration and shared fixtures."""

import pytest

from devzat_plugin.channel.mock import MockChannel


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def channel() -> MockChannel:
    """Fresh in-memory channel."""
    return MockChannel(token="dvz.token@hello.world1234")
