"""
Pytest configuration for PaiaClient tests.
"""

import pytest

from paiaclient import PaiaClient

from .test_utils import BASE_URL, FakePaiaServer


def pytest_addoption(parser):
    """Add command line option to enable integration tests."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against a live PAIA server",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: needs a live PAIA server")


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is passed."""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture
def paia_server():
    return FakePaiaServer()


@pytest.fixture
def paia_client(paia_server):
    with PaiaClient(BASE_URL, transport=paia_server.transport) as client:
        yield client


@pytest.fixture
def logged_in(paia_client, paia_server):
    """A client with a patron logged in, and the patron."""
    patron = paia_client.patron_login("reader", "secret")
    paia_server.requests.clear()
    return paia_client, patron
