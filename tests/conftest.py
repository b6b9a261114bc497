import pytest

from formflow.settings import get_settings


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: Fast unit tests with fakes only")


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are cached per process; drop the cache around each test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
