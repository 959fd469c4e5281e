"""
Shared test setup for the mentor service.
"""

import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mentor.engine.telemetry import Telemetry  # noqa: E402


@pytest.fixture(autouse=True)
def clear_traces():
    Telemetry.clear()
    yield
    Telemetry.clear()
