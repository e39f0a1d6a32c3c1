import pytest

from tests.helpers import InMemoryServers, echo_registry


@pytest.fixture
def servers():
    """Transport factory serving an 'alpha' echo server; every other name fails to launch."""
    return InMemoryServers({"alpha": echo_registry("alpha")})
