"""
Shared pytest configuration.

Tests never reach Redis or a real provider: the settings singleton is
pinned to the in-process cache and simulation messaging for every test,
whatever the local .env says.
"""

import pytest

from crowdalert.core.config import settings


@pytest.fixture(autouse=True)
def _offline_settings(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_ENABLED", False)
    monkeypatch.setattr(settings, "SMS_PROVIDER", "simulation")
    monkeypatch.setattr(settings, "DEFAULT_COUNTRY_CODE", "+91")
    yield
