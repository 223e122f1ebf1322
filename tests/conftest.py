"""Root conftest.py for test configuration.

Tests run against the local src/ tree and never see ``CODERECALL__*``
variables exported by the developer's shell.
"""

import os
import sys
from pathlib import Path

import pytest

_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("CODERECALL__"):
            monkeypatch.delenv(name)
