import pytest


@pytest.fixture(autouse=True)
def _wired(services):
    """Command handlers reach the engine through the process-wide services."""
    yield services
