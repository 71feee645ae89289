"""Shared test fixtures."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

import backend


@pytest.fixture(autouse=True)
def clear_rates_cache():
    """Clear the parsed rate file cache before each test to avoid cross-test pollution."""
    backend._rates_cache.clear()
