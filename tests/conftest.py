"""Shared test configuration."""

from __future__ import annotations

import os

import pytest

from coin_ledger_service.config import clear_settings_cache
from coin_ledger_service.core.state import reset_app_state


@pytest.fixture(autouse=True)
def _isolate_settings_and_state():
    """Make sure no test sees another test's cached settings or app state."""
    clear_settings_cache()
    reset_app_state()
    yield
    reset_app_state()
    clear_settings_cache()
    os.environ.pop("CONFIG_PATH", None)
