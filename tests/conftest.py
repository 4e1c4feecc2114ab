"""
Pytest configuration and shared fixtures.
"""
import pytest

from factories import SERVER_KEY
from services.reconciliation import InMemoryReconciliationSink


@pytest.fixture
def server_key():
    """Merchant server key used to sign test notifications"""
    return SERVER_KEY


@pytest.fixture
def sink():
    """Empty in-memory reconciliation sink"""
    return InMemoryReconciliationSink()
