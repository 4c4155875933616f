"""Shared fixtures."""

from __future__ import annotations

import pytest
from helpers import FakeCompletionClient

from switchboard.delegation import HandlerRegistry


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_ai() -> type[FakeCompletionClient]:
    return FakeCompletionClient


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()
