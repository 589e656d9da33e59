import os

import pytest

from voice_gate.config.settings import PipelineConfig

from .helpers import FakeAcquirer, FakeTransport


@pytest.fixture
def setup_test_env():
    """Setup test environment variables"""
    original_env = os.environ.copy()

    for key in list(os.environ):
        if key.startswith("VOICE_GATE_"):
            del os.environ[key]

    yield

    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def config():
    """Default pipeline config with rebuilds undebounced for fast tests."""
    return PipelineConfig(rebuild_debounce_s=0.0)


@pytest.fixture
def acquirer():
    return FakeAcquirer()


@pytest.fixture
def transport():
    return FakeTransport()
