"""
Shared pytest fixtures for all tests.
"""

import pytest

from helpers import BASE_URL
from maestro.core.schema import ModelProfile


@pytest.fixture
def profile() -> ModelProfile:
    """A configured local profile pointing at the mocked endpoint."""
    return ModelProfile(provider="ollama", base_url=BASE_URL, model="test-model", max_iterations=4)
