"""Fixtures for module tests using WireMock testcontainers."""

from collections.abc import Generator
from pathlib import Path

import pytest
from testcontainers.core import testcontainers_config
from wiremock.constants import Config
from wiremock.testing.testcontainer import WireMockContainer

SAMPLE_TESTS = '''
def test_adds_item():
    pass


def test_removes_item():
    assert False, "cart not empty"


def test_checks_out():
    raise RuntimeError("payment gateway unreachable")
'''


@pytest.fixture(scope="session", autouse=True)
def _disable_ryuk() -> None:
    """Disable the extra cleanup instance, we use contexts to clean containers."""
    testcontainers_config.ryuk_disabled = True


@pytest.fixture(scope="session")
def wiremock_server() -> Generator[WireMockContainer, None, None]:
    """Start WireMock container using wiremock's testcontainer support."""
    with WireMockContainer(secure=False) as wm:
        Config.base_url = wm.get_url("__admin")
        yield wm
        print(wm.get_logs())


@pytest.fixture(scope="session")
def wiremock_url(wiremock_server: WireMockContainer) -> str:
    """URL for WireMock from the host running the tests."""
    host = wiremock_server.get_container_host_ip()
    port = wiremock_server.get_exposed_port(8080)
    return f"http://{host}:{port}"


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Create a project with a pytest test file."""
    (tmp_path / "pytest.ini").write_text("[pytest]\n")
    (tmp_path / "tests").mkdir()
    (tmp_path / "tests" / "test_cart.py").write_text(SAMPLE_TESTS)
    return tmp_path
