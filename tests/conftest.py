"""Shared fixtures: an isolated config dir and a seeded in-memory store."""

import shutil
import tempfile
from pathlib import Path

import pytest

from ttt.config import Settings
from ttt.core.remote import MemoryTableStore
from ttt.core.store import DirectStoreClient


def seed_tables() -> dict:
    return {
        "lists": {
            "list_1": {"name": "Groceries", "backgroundColour": "green", "type": "Shopping", "icon": "🛒"},
            "list_2": {"name": "Work", "backgroundColour": "blue", "type": "Info", "icon": ""},
        },
        "todos": {
            "todo_1": {"list": "list_1", "text": "Milk", "done": False, "fiveStarRating": 1, "type": "A"},
            "todo_2": {"list": "list_1", "text": "Bread", "done": True, "notes": "wholegrain"},
            "todo_3": {"list": "list_2", "text": "Write report", "done": False, "date": "2025-02-02"},
        },
    }


@pytest.fixture
def config_dir():
    """Short temporary directory; Unix socket paths are limited to ~100 bytes."""
    path = Path(tempfile.mkdtemp(prefix="ttt-"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def settings(config_dir) -> Settings:
    return Settings(
        _env_file=None,
        config_dir=config_dir,
        daemon_enabled=False,
        initial_sync_timeout=0,
        socket_connect_timeout=1.0,
        request_timeout=2.0,
        spawn_timeout=5.0,
        restart_delay=0.3,
        shutdown_flush_delay=0.05,
    )


@pytest.fixture
def tables() -> MemoryTableStore:
    return MemoryTableStore(seed_tables())


@pytest.fixture
def store(settings, tables) -> DirectStoreClient:
    """DirectStoreClient over the seeded in-memory tables."""
    return DirectStoreClient(settings, tables=tables)
