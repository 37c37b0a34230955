"""Shared pytest fixtures for easyproject-mcp tests."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Generator

import pytest
from click.testing import CliRunner

from easyproject_mcp.cache import ResponseCache
from easyproject_mcp.client import EasyProjectClient
from easyproject_mcp.logging import LOGGER_NAME
from tests._fakes import API_KEY, BASE_URL, FakeClock, FakeUpstream


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def client(upstream: FakeUpstream) -> AsyncGenerator[EasyProjectClient, None]:
    """Client with a cache and no rate limiter, wired to the fake upstream."""
    c = EasyProjectClient(BASE_URL, API_KEY, cache=ResponseCache(300, 100), transport=upstream.transport)
    yield c
    await c.aclose()


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Generator[None, None, None]:
    """Undo setup_logging() so later tests' caplog still sees package records."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
