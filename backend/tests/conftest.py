"""
Pytest configuration for the nvengine test suite.
"""

import sys
from pathlib import Path

import pytest

# Allow running the suite without installing the package
backend_path = Path(__file__).parent.parent
if str(backend_path) not in sys.path:
    sys.path.insert(0, str(backend_path))


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests that wait on real timers"
    )


# Force anyio to use asyncio
@pytest.fixture
def anyio_backend():
    return "asyncio"
