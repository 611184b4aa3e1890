"""Shared fixtures."""

from __future__ import annotations

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider

# The global provider can only be set once per process
_PROVIDER = TracerProvider()
trace.set_tracer_provider(_PROVIDER)


@pytest.fixture
def tracer() -> trace.Tracer:
    """A tracer backed by the SDK provider, so spans record."""
    return _PROVIDER.get_tracer(__name__)
