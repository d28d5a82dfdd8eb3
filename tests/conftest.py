import os
import sys

import pytest


def pytest_configure():
    # Make `src/` importable so `common`, `state` and `storage` resolve as top-level packages
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


@pytest.fixture(autouse=True)
def _isolated_hims_env(monkeypatch):
    # Host HIMS_* variables must not leak into Settings.from_env()
    for name in list(os.environ):
        if name.startswith("HIMS_"):
            monkeypatch.delenv(name, raising=False)
