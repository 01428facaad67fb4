"""Integración de los repositorios SQLAlchemy sobre SQLite (aiosqlite)."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from motor_riesgo.domain import models
from motor_riesgo.domain.entities import (
    ReputationEntry,
    TransactionRecord,
    UserBlockRecord,
    default_weight_table,
)
from motor_riesgo.domain.schemas import (
    DecisionAction,
    EntryStatus,
    FeedbackType,
    ListType,
    RiskLevel,
    RiskTier,
    TransactionStatus,
)
from motor_riesgo.infrastructure.database.history_repository import SqlUserHistoryStore
from motor_riesgo.infrastructure.database.reputation_repository import SqlReputationStore
from motor_riesgo.infrastructure.database.session import (
    build_engine,
    build_sessionmaker,
    init_db,
)

pytestmark = pytest.mark.integration

NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
async def sessions(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'riesgo.db'}")
    await init_db(engine)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture
def history_store(sessions):
    return SqlUserHistoryStore(sessions)


@pytest.fixture
def reputation_repo(sessions):
    return SqlReputationStore(sessions)


def _tx(status=TransactionStatus.COMPLETED, **overrides) -> TransactionRecord:
    data = {
        "id":         str(uuid.uuid4()),
        "user_id":    "user-1",
        "payee":      "alice@upi",
        "amount":     1000.0,
        "status":     status,
        "created_at": NOW - timedelta(days=1),
        "device_id":  "device-a",
        "city":       "Monterrey",
        "risk_score": 10,
        "risk_level": RiskLevel.LOW,
        "action":     DecisionAction.APPROVE,
        "breakdown":  {"NEW_PAYEE": 0.0},
        "reasons":    [],
        "metadata":   {},
    }
    data.update(overrides)
    return TransactionRecord(**data)


class TestLearningState:

    async def test_ensure_user_is_idempotent(self, history_store):
        await history_store.ensure_user("user-1")
        await history_store.ensure_user("user-1")

        state = await history_store.get_learning_state("user-1")
        assert state.weights == default_weight_table()
        assert state.version == 0
        assert state.learning_enabled is True

    async def test_compare_and_swap(self, history_store):
        await history_store.ensure_user("user-1")
        state = await history_store.get_learning_state("user-1")
        state.weights["AMOUNT_ANOMALY"] = 21.25

        assert await history_store.save_learning_state(state, expected_version=0) is True
        # Segunda escritura con la versión vieja
        assert await history_store.save_learning_state(state, expected_version=0) is False

        stored = await history_store.get_learning_state("user-1")
        assert stored.version == 1
        assert stored.weights["AMOUNT_ANOMALY"] == 21.25

    async def test_backfill_only_touches_missing_weights(self, history_store, sessions):
        await history_store.ensure_user("user-1")
        async with sessions() as session:
            session.add(models.User(id="legacy", adaptive_weights=None))
            await session.commit()

        assert await history_store.backfill_default_weights(default_weight_table()) == 1
        assert await history_store.get_adaptive_weights("legacy") == default_weight_table()

    async def test_learning_toggle(self, history_store):
        await history_store.ensure_user("user-1")
        await history_store.set_learning_enabled("user-1", False)
        assert (await history_store.get_learning_state("user-1")).learning_enabled is False


class TestProfileAndVelocity:

    async def test_profile_uses_only_recent_completed(self, history_store):
        await history_store.save_transaction(_tx(amount=1000))
        await history_store.save_transaction(_tx(amount=3000, payee="bob@upi"))
        await history_store.save_transaction(_tx(amount=90000, status=TransactionStatus.BLOCKED))
        await history_store.save_transaction(_tx(amount=500, created_at=NOW - timedelta(days=120)))

        profile = await history_store.get_profile("user-1", NOW)
        assert profile.transaction_count == 2
        assert profile.average_amount == 2000.0
        assert profile.known_payees == frozenset({"alice@upi", "bob@upi"})
        assert profile.common_city == "Monterrey"
        assert profile.hour_counts == {14: 2}

    async def test_empty_profile(self, history_store):
        profile = await history_store.get_profile("nobody", NOW)
        assert profile.transaction_count == 0

    async def test_velocity_window(self, history_store):
        await history_store.save_transaction(_tx(amount=4000, created_at=NOW - timedelta(minutes=10)))
        await history_store.save_transaction(_tx(
            amount=6000, status=TransactionStatus.PENDING, created_at=NOW - timedelta(minutes=5)
        ))
        await history_store.save_transaction(_tx(
            amount=9000, status=TransactionStatus.BLOCKED, created_at=NOW - timedelta(minutes=5)
        ))
        await history_store.save_transaction(_tx(amount=7000, created_at=NOW - timedelta(hours=2)))

        window = await history_store.get_velocity_window("user-1", NOW - timedelta(minutes=30))
        assert window.count == 2
        assert window.total_amount == 10000.0


class TestTransactions:

    async def test_roundtrip_and_update(self, history_store):
        record = _tx(
            status   = TransactionStatus.DELAYED,
            action   = DecisionAction.DELAY,
            metadata = {"expires_at": NOW.isoformat()},
        )
        await history_store.save_transaction(record)

        loaded = await history_store.get_transaction(record.id)
        assert loaded.status == TransactionStatus.DELAYED
        assert loaded.metadata == {"expires_at": NOW.isoformat()}
        assert loaded.created_at == record.created_at

        loaded.status = TransactionStatus.COMPLETED
        loaded.metadata["confirmed_at"] = NOW.isoformat()
        await history_store.update_transaction(loaded)
        assert (await history_store.get_transaction(record.id)).status == TransactionStatus.COMPLETED

    async def test_invalid_id_returns_none(self, history_store):
        assert await history_store.get_transaction("no-es-uuid") is None

    async def test_feedback_marked_once(self, history_store):
        record = _tx()
        await history_store.save_transaction(record)
        assert await history_store.mark_feedback(record.id, FeedbackType.NOT_FRAUD, None) is True
        assert await history_store.mark_feedback(record.id, FeedbackType.CONFIRMED_FRAUD, None) is False
        assert (await history_store.get_transaction(record.id)).feedback_type == FeedbackType.NOT_FRAUD

    async def test_feedback_mark_can_be_released(self, history_store):
        record = _tx()
        await history_store.save_transaction(record)
        await history_store.mark_feedback(record.id, FeedbackType.NOT_FRAUD, "mi hermano")

        assert await history_store.clear_feedback(record.id, FeedbackType.CONFIRMED_FRAUD) is False
        assert await history_store.clear_feedback(record.id, FeedbackType.NOT_FRAUD) is True
        assert (await history_store.get_transaction(record.id)).feedback_type is None
        assert await history_store.mark_feedback(record.id, FeedbackType.NOT_FRAUD, None) is True


class TestCircle:

    async def test_circle_report_visibility(self, history_store):
        await history_store.add_trusted_contact("user-1", "friend")
        await history_store.add_trusted_contact("user-1", "friend")
        await history_store.add_circle_report("friend", "scam@upi", "pidió dinero")

        assert await history_store.has_circle_report("user-1", "scam@upi") is True
        assert await history_store.has_circle_report("user-2", "scam@upi") is False
        assert await history_store.circle_members_of("friend") == ["user-1"]


class TestReputationStore:

    async def test_create_if_absent_respects_unique_key(self, reputation_repo):
        entry = ReputationEntry(identifier="scam@upi", list_type=ListType.BLACKLIST)
        assert await reputation_repo.create_if_absent(entry) is True
        assert await reputation_repo.create_if_absent(entry) is False

        # La misma clave en la otra lista es una entrada distinta
        whitelist = ReputationEntry(identifier="scam@upi", list_type=ListType.WHITELIST)
        assert await reputation_repo.create_if_absent(whitelist) is True
        assert len(await reputation_repo.list_entries(ListType.BLACKLIST)) == 1

    async def test_promote_only_under_review(self, reputation_repo):
        entry = ReputationEntry(identifier="scam@upi", list_type=ListType.BLACKLIST)
        await reputation_repo.create_if_absent(entry)

        entry.risk_tier = RiskTier.HIGH
        assert await reputation_repo.promote_under_review(entry) is True
        assert await reputation_repo.promote_under_review(entry) is False

        stored = await reputation_repo.find("scam@upi")
        assert stored.status == EntryStatus.ACTIVE
        assert stored.risk_tier == RiskTier.HIGH

    async def test_whitelist_expiry(self, reputation_repo):
        await reputation_repo.upsert(ReputationEntry(
            identifier = "shop@upi",
            list_type  = ListType.WHITELIST,
            status     = EntryStatus.ACTIVE,
            expires_at = NOW + timedelta(days=1),
        ))
        assert await reputation_repo.find_whitelisted("shop@upi", NOW) is not None
        assert await reputation_repo.find_whitelisted("shop@upi", NOW + timedelta(days=2)) is None

    async def test_user_blocks(self, reputation_repo):
        def block(user):
            return UserBlockRecord(user_id=user, identifier="scam@upi", reason=None, blocked_at=NOW)

        assert await reputation_repo.add_user_block(block("u1")) is True
        assert await reputation_repo.add_user_block(block("u1")) is False
        await reputation_repo.add_user_block(block("u2"))

        assert await reputation_repo.count_blockers("scam@upi") == 2
        assert await reputation_repo.is_blocked_by("u1", "scam@upi") is True
        assert await reputation_repo.remove_user_block("u1", "scam@upi") is True
        assert await reputation_repo.remove_user_block("u1", "scam@upi") is False
        assert [b.user_id for b in await reputation_repo.list_user_blocks("u2")] == ["u2"]
