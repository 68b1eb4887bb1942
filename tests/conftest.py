"""
Pytest configuration and shared fixtures for PeekAI tests.

This module provides common fixtures used across all test files:
- Environment defaults set before the app is imported
- Test client setup
- Fresh in-memory stores and services per test
"""

import os
import sys

import pytest

# Environment setup before any imports
os.environ["DEV_MODE"] = "true"
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_URL_DIRECT", None)
os.environ.pop("SENTRY_DSN", None)
os.environ.pop("STRIPE_SECRET_KEY", None)

# Ensure project root is in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))


@pytest.fixture
def client():
    """FastAPI test client fixture."""
    from fastapi.testclient import TestClient
    from server import app

    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def isolated_singletons(monkeypatch):
    """Give every test fresh in-memory stores and unbuilt service singletons."""
    import src.history.service as history_service
    import src.history.store as history_store
    import src.payments.stripe_service as stripe_service
    import src.payments.subscription_sync as subscription_sync
    import src.profiles.service as profile_service
    import src.profiles.store as profile_store
    import src.relay.service as relay_service
    import src.usage.ledger as ledger

    monkeypatch.setattr(profile_store, "_profile_store", profile_store.InMemoryProfileStore())
    monkeypatch.setattr(history_store, "_history_store", history_store.InMemoryHistoryStore())
    monkeypatch.setattr(ledger, "_usage_ledger", None)
    monkeypatch.setattr(profile_service, "_profile_service", None)
    monkeypatch.setattr(history_service, "_history_log", None)
    monkeypatch.setattr(relay_service, "_ai_relay", None)
    monkeypatch.setattr(stripe_service, "_stripe_service", None)
    monkeypatch.setattr(subscription_sync, "_sync_service", None)
    yield


@pytest.fixture
def profile_store():
    from src.profiles.store import get_profile_store

    return get_profile_store()


@pytest.fixture
def history_store():
    from src.history.store import get_history_store

    return get_history_store()
