"""
Pytest fixtures for sharedmailbox tests.

This module provides common fixtures used across test modules.
"""

import os
import sys

import pytest
from hypothesis import Phase, Verbosity, settings

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from sharedmailbox.common.config import get_settings  # noqa: E402
from sharedmailbox.inbox.poller import InboxPoller  # noqa: E402
from sharedmailbox.storage.memory import InMemoryBackend  # noqa: E402

from helpers import HOSTS, RECIPIENT  # noqa: E402

settings.register_profile(
    "ci",
    max_examples=100,
    deadline=None,
    verbosity=Verbosity.normal,
)

settings.register_profile(
    "dev",
    max_examples=25,
    deadline=None,
)

settings.register_profile(
    "quick",
    max_examples=10,
    deadline=None,
    phases=[Phase.generate],
)

_profile = os.environ.get("HYPOTHESIS_PROFILE", "dev")
if _profile in ("ci", "dev", "quick"):
    settings.load_profile(_profile)


@pytest.fixture
def storage():
    """Provide an empty in-memory storage backend."""
    return InMemoryBackend()


@pytest.fixture
def poller(storage):
    """Provide an inbox poller over the in-memory backend."""
    return InboxPoller(storage, RECIPIENT, HOSTS, prefix="inbound/")


@pytest.fixture
def clean_env(monkeypatch):
    """Remove sharedmailbox environment variables and the settings cache."""
    for name in list(os.environ):
        if name.startswith(
            ("MAILBOX_", "STORAGE_", "LOCK_", "PROBE_", "LOG_", "SHAREDMAILBOX_")
        ):
            monkeypatch.delenv(name, raising=False)
    # Restored on teardown even when the CLI sets it directly
    monkeypatch.setenv("SHAREDMAILBOX_CONFIG_FILE", "")
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()
