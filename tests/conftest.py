"""
Pytest configuration and shared fixtures.
"""

import os
import pytest


SETTINGS_ENV_VARS = (
    "REPAIRX_DB_PATH",
    "REPAIRX_NOTIFY_WEBHOOK_URL",
    "REPAIRX_NOTIFY_MAX_ATTEMPTS",
    "REPAIRX_NOTIFY_BASE_DELAY",
    "REPAIRX_NOTIFY_MAX_DELAY",
    "REPAIRX_NOTIFY_TIMEOUT",
    "REPAIRX_CONFLICT_RETRIES",
    "REPAIRX_LOG_DIR",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True, scope="function")
def reset_settings_env():
    """
    Clear lifecycle settings from the environment before each test.

    Tests that need a setting set it explicitly; the original values are
    restored afterwards.
    """
    # Store original values
    original = {name: os.environ.get(name) for name in SETTINGS_ENV_VARS}

    for name in SETTINGS_ENV_VARS:
        os.environ.pop(name, None)

    yield

    # Restore original values
    for name, value in original.items():
        if value is not None:
            os.environ[name] = value
        elif name in os.environ:
            del os.environ[name]
