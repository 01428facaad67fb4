"""
Fixtures compartidas. Las variables de entorno se fijan antes de
importar motor_riesgo porque Settings() se instancia al importar config.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-para-pruebas")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./motor_riesgo_test.db")
os.environ.setdefault("REPUTATION_CACHE_ENABLED", "false")

from datetime import datetime, timezone

import pytest

from motor_riesgo.domain.entities import TransactionContext
from motor_riesgo.services.container import build_services
from tests.fakes import (
    InMemoryHistoryStore,
    InMemoryReputationStore,
    InMemoryVerdictCache,
    RecordingNotifier,
)


@pytest.fixture
def history():
    return InMemoryHistoryStore()


@pytest.fixture
def reputation_store():
    return InMemoryReputationStore()


@pytest.fixture
def verdict_cache():
    return InMemoryVerdictCache()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def services(history, reputation_store, verdict_cache, notifier):
    return build_services(
        history          = history,
        reputation_store = reputation_store,
        verdict_cache    = verdict_cache,
        notifier         = notifier,
    )


@pytest.fixture
def make_context():
    def _make(**overrides):
        data = {
            "user_id":   "user-1",
            "payee":     "alice@upi",
            "amount":    3000.0,
            "timestamp": datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc),
            "device_id": "device-a",
        }
        data.update(overrides)
        return TransactionContext(**data)
    return _make
