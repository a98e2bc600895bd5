"""Shared pytest fixtures for the shoot operator tests."""

import pytest

from tests.fakes import FakeClock


@pytest.fixture
def clock():
    """A clock frozen at T0 that tests advance explicitly."""
    return FakeClock()
