"""
Pytest configuration for Ojo tests.

Keeps tests from modifying the .env file and wires the in-memory
collaborators from ``fakes`` into a controller.
"""

import pytest
from unittest.mock import patch

from fakes import FakeAnalyzer, FakeFrameSource, FakeSpeaker
from ojo.controller import CycleController, CycleSettings


@pytest.fixture(autouse=True)
def mock_config_save():
    """Prevent tests from modifying .env file."""
    with patch('ojo.config.config.save'):
        yield


@pytest.fixture
def fast_settings():
    return CycleSettings(
        warmup_delay_ms=10,
        capture_retry_delay_ms=10,
        analysis_error_delay_ms=20,
        pacing_delay_ms=10,
        target_language="es",
    )


@pytest.fixture
def frame_source():
    return FakeFrameSource()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def speaker():
    return FakeSpeaker()


@pytest.fixture
def controller(frame_source, analyzer, speaker, fast_settings):
    ctrl = CycleController(frame_source, analyzer, speaker, fast_settings)
    yield ctrl
    if ctrl.is_active:
        ctrl.deactivate()


@pytest.fixture
def recorded_states(controller):
    """States pushed to subscribers, in order."""
    states = []
    controller.subscribe(lambda update: states.append(update.state))
    return states
