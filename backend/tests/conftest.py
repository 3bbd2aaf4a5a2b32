"""Pytest configuration shared by all collector tests."""

import asyncio

import pytest

COLLECTOR_ENV_PREFIXES = ("KIS_", "TWELVEDATA_", "COLLECTOR_")


@pytest.fixture
def event_loop_policy():
    return asyncio.DefaultEventLoopPolicy()


@pytest.fixture(autouse=True)
def clean_collector_env(monkeypatch):
    """Keep host credentials and paths out of Settings.from_env()."""
    import os

    for name in list(os.environ):
        if name.startswith(COLLECTOR_ENV_PREFIXES):
            monkeypatch.delenv(name)
