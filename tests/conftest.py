from __future__ import annotations

import sys

import pytest


@pytest.fixture(autouse=True)
def restore_excepthook():
    original = sys.excepthook
    yield
    sys.excepthook = original
