from pathlib import Path

import pytest

from logging_setup import configure_logging

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture(scope="session", autouse=True)
def quiet_logging():
    """Keep structlog on stderr at warning level for the whole suite."""
    configure_logging("WARNING", "text")


@pytest.fixture
def fixture_path():
    def _path(name: str) -> Path:
        return FIXTURES / name

    return _path
