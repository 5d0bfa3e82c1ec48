"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the TESTING environment variable so no .env file is loaded, and
configures the API key grants used by the HTTP tests.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("APP_API_KEYS", "alice-key=alice:developer,bob-key=bob:user,root-key=root:admin")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from marketplace.core.app_factory import create_app
from marketplace.core.config import AppSettings


@pytest.fixture
def clock() -> Mock:
    """Controllable time source (UNIX seconds)."""
    return Mock(return_value=1000.0)


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings()  # type: ignore[call-arg]


@pytest.fixture
def app(app_settings: AppSettings, clock: Mock):
    return create_app(app_settings, clock=clock, configure_logs=False)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
