"""Shared fixtures."""

import pytest
from loguru import logger

from pymigrate.config import reset_config


@pytest.fixture(autouse=True)
def _reset_global_state():
    """Each test starts with no global configuration and logging enabled."""
    reset_config()
    yield
    reset_config()
    logger.enable("pymigrate")
