"""Shared pytest fixtures for intakebot tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_process_state():
    """Reset process-wide singletons to avoid cross-test contamination.

    The file correlation store and the lazily built service instances are
    module-level globals that persist between tests.
    """
    from intakebot.api import services
    from intakebot.domain.file_store import file_store

    file_store.clear()
    services.reset()
    yield
    file_store.clear()
    services.reset()
