"""
Root conftest for all tests.

Keeps the cached settings from leaking between tests: anything that calls
``get_settings()`` sees the environment of the test that is running.
"""

import pytest

from config.settings import get_settings


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
