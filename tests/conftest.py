"""
Pytest configuration and shared fixtures for serviceserver tests
"""
import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from serviceserver.config import ServiceServerConfig  # noqa: E402


class RecordingLog:
    """Logger double that keeps what the service servers report."""

    def __init__(self):
        self.errors = []
        self.debugs = []
        self.lines = []

    def error(self, message, context=None):
        self.errors.append(message)

    def debug(self, message, context=None):
        self.debugs.append((message, context))

    def log(self, level, *args, **kwargs):
        self.lines.append((level, args))


@pytest.fixture
def log():
    return RecordingLog()


@pytest.fixture
def config():
    return ServiceServerConfig(product='TestProduct')


def noop_handler(request, response, next_handler):
    next_handler()
