"""Test configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tests.helpers import BASE_TIME, FakeClock, build_library


@pytest.fixture()
def library():
    return build_library()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def now():
    return BASE_TIME
