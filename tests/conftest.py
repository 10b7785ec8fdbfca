import pytest
import structlog


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Keep structlog config set by one test (e.g. CLI runs bound to a
    temporary stderr) from leaking into later tests."""
    yield
    structlog.reset_defaults()
