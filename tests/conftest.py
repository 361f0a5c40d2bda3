from __future__ import annotations

import pytest

from mcp_scratch.core.dependencies import reset_dependencies


@pytest.fixture(autouse=True)
def fresh_dependencies():
    reset_dependencies()
    yield
    reset_dependencies()
