"""Shared fixtures."""

import pytest

from flowrun.observability import clear_trace_context


@pytest.fixture(autouse=True)
def fresh_trace_context():
    clear_trace_context()
    yield
    clear_trace_context()
