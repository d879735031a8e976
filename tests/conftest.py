"""
Shared fixtures for docmodel tests.
"""

import pytest

from docmodel.config import Settings
from docmodel.registry import ModelRegistry, reset_registry


@pytest.fixture(autouse=True)
def _isolated_default_registry():
    """Each test starts with an empty default registry."""
    reset_registry()
    yield
    reset_registry()


@pytest.fixture
def registry():
    """Independent registry; models are closed after the test."""
    reg = ModelRegistry()
    yield reg
    reg.close_all()


@pytest.fixture
def settings():
    """Settings keeping every model in memory."""
    return Settings(in_memory_only=True)
