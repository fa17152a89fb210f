import pytest

from rtr.core.config import CoordinatorConfig, QueryLimits, TestRunManagerConfig
from rtr.core.managers.progress_bridge import ProgressBridge

from fakes import FakeConnection, FakeTransport, RecordingReporter, TransportRecorder


# --- Shared Fixtures ---

@pytest.fixture
def connection():
    """Scripted tooling connection with a valid access token."""
    return FakeConnection()


@pytest.fixture
def transport():
    return FakeTransport("https://na1.example.test/cometd/36.0")


@pytest.fixture
def transport_factory():
    return TransportRecorder()


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def progress(reporter):
    return ProgressBridge(reporter)


@pytest.fixture
def coordinator_config():
    """Fast polling, generous timeout."""
    return CoordinatorConfig(poll_interval=0.01, wait_timeout=5.0)


@pytest.fixture
def manager_config(coordinator_config):
    return TestRunManagerConfig(
        coordinator=coordinator_config,
        query_limits=QueryLimits(),
        submit_max_retries=3,
        submit_retry_base_wait=0.01,
        submit_retry_max_wait=0.02,
    )
