"""Shared pytest fixtures for peribolos controller tests."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest

from tests.helpers import Harness, make_harness


@pytest.fixture
def harness() -> Harness:
    """A controller wired around mocks, with one known installation."""
    return make_harness()


@pytest.fixture(autouse=True)
def _reset_peribolos_logger() -> Iterator[None]:
    """Keep logger levels set by setup_logging from leaking between tests."""
    logger = logging.getLogger("peribolos")
    level = logger.level
    yield
    logger.setLevel(level)
