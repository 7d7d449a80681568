import pytest

from fake_idb import FakeIDBFactory

from gradebook import ui_log
from gradebook.connection import ConnectionManager, reset_manager
from gradebook.store import StudentStore


@pytest.fixture(autouse=True)
def _fresh_manager():
    reset_manager()
    yield
    reset_manager()


@pytest.fixture
def factory():
    return FakeIDBFactory()


@pytest.fixture
def manager(factory):
    return ConnectionManager(factory=factory)


@pytest.fixture
def store(manager):
    return StudentStore(manager)


@pytest.fixture
def log_entries():
    """Capture ui_log entries emitted during the test."""
    entries = []
    ui_log.set_sinks(entries.append, entries.clear)
    yield entries
    ui_log.set_sinks()
