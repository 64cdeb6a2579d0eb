import os
import sys
from pathlib import Path

import pytest
import structlog

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_structlog():
    """Reset structlog configuration before each test to avoid caching issues."""
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep TELEPOLL variables from the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("TELEPOLL"):
            monkeypatch.delenv(key, raising=False)
