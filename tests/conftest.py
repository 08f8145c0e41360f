"""Test bootstrap for mock-api-server."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest
import structlog

APP_ROOT = Path(__file__).resolve().parents[1]

path_str = str(APP_ROOT)
if path_str not in sys.path:
    sys.path.insert(0, path_str)


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.reset_defaults()
    # CLI tests point the root handler at CliRunner's stream, closed by now
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, logging.StreamHandler) and getattr(handler.stream, "closed", False):
            root.removeHandler(handler)
