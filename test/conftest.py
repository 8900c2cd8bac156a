"""Shared fixtures for the soltrace test suite."""

import pytest

from soltrace.core.trace_types import normalize_trace_call

from trace_builders import ORACLE, TOKEN, VAULT, frame


@pytest.fixture
def nested_trace():
    """A -> B -> (internal frame that reverts) ; A -> C."""
    return normalize_trace_call(frame(calls=[
        frame(from_=TOKEN, to=VAULT, calls=[
            frame('INTERNALCALL', from_=None, to=None, error='execution reverted'),
        ]),
        frame('STATICCALL', from_=TOKEN, to=ORACLE),
    ]))
