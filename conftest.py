"""
Pytest configuration and shared fixtures for SigKit tests.
"""
import asyncio

import pytest

from player_cache import PlayerScriptCache
from script_compiler import ScriptCompiler


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture
def compiler():
    compiler = ScriptCompiler()
    yield compiler
    compiler.close()


@pytest.fixture
def cache():
    cache = PlayerScriptCache()
    yield cache
    cache.close()


@pytest.fixture
def counting_fetch():
    """
    Factory fixture for an async fetch_text that records every URL it is asked for.

    Usage:
        fetch = counting_fetch(PLAYER_SCRIPT, delay=0.05)
        await cache.get_or_compute(url, fetch)
        assert fetch.calls == [url]
    """

    def _make(body: str, delay: float = 0.0):
        async def fetch(url: str) -> str:
            fetch.calls.append(url)
            await asyncio.sleep(delay)
            return body

        fetch.calls = []
        return fetch

    return _make
