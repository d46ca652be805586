from __future__ import annotations

import pytest

from gridci.cache import MemoryCacheStore
from gridci.ui.console import Console, set_console
from gridci.workspace import Workspace


@pytest.fixture
def console():
    c = Console(quiet=True)
    set_console(c)
    return c


@pytest.fixture
def store():
    return MemoryCacheStore()


@pytest.fixture
def workspace(tmp_path):
    return Workspace(tmp_path / "work", run_id="test-run", keep=True)
