"""Unit tests for RiskScoringEngine."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from motor_riesgo.core.exceptions import InvalidConfigurationException
from motor_riesgo.domain.entities import (
    ReputationVerdict,
    UserHistoryProfile,
    VelocityWindow,
)
from motor_riesgo.domain.schemas import DecisionAction, RiskFactor, RiskLevel, RiskTier
from motor_riesgo.services.risk_scoring_engine import (
    RiskScoringEngine,
    risk_level_for,
)

pytestmark = pytest.mark.unit


def _established(**overrides) -> UserHistoryProfile:
    data = {
        "transaction_count": 50,
        "average_amount":    5000.0,
        "max_amount":        12000.0,
        "known_payees":      frozenset({"alice@upi"}),
        "known_devices":     frozenset({"device-a"}),
        "common_city":       "Monterrey",
        "hour_counts":       {13: 10, 14: 30, 15: 10},
    }
    data.update(overrides)
    return UserHistoryProfile(**data)


@pytest.fixture
def engine():
    return RiskScoringEngine()


class TestRiskLevels:

    @pytest.mark.parametrize("score,level", [
        (0, RiskLevel.LOW), (29, RiskLevel.LOW),
        (30, RiskLevel.MEDIUM), (59, RiskLevel.MEDIUM),
        (60, RiskLevel.HIGH), (79, RiskLevel.HIGH),
        (80, RiskLevel.CRITICAL), (100, RiskLevel.CRITICAL),
    ])
    def test_band_boundaries(self, score, level):
        assert risk_level_for(score) == level


class TestScenarios:

    def test_new_user_large_night_payment_is_critical(self, engine, make_context):
        ctx = make_context(
            amount    = 75000,
            payee     = "stranger@upi",
            device_id = "new-device",
            timestamp = datetime(2026, 3, 10, 2, 0, tzinfo=timezone.utc),
        )
        result = engine.score(ctx, UserHistoryProfile.empty(), velocity=VelocityWindow())

        # 20 + 12.75 + 20 + 15 + 3 + 9 = 79.75 → 80
        assert result.contributions[RiskFactor.AMOUNT_ANOMALY.value] == pytest.approx(20.0)
        assert result.contributions[RiskFactor.TIME_PATTERN.value] == pytest.approx(12.75)
        assert result.contributions[RiskFactor.NEW_PAYEE.value] == pytest.approx(20.0)
        assert result.contributions[RiskFactor.DEVICE_FINGERPRINT.value] == pytest.approx(15.0)
        assert result.contributions[RiskFactor.LOCATION_ANOMALY.value] == pytest.approx(3.0)
        assert result.contributions[RiskFactor.VELOCITY_CHECK.value] == pytest.approx(9.0)
        assert result.total_score == 80
        assert result.risk_level == RiskLevel.CRITICAL
        assert result.suggested_decision == DecisionAction.BLOCK

    def test_established_user_routine_payment_is_low(self, engine, make_context):
        ctx = make_context(amount=3000)
        result = engine.score(ctx, _established(), velocity=VelocityWindow())

        # Solo aporta la ubicación no disponible (30 × 10 / 100)
        assert result.total_score == 3
        assert result.risk_level == RiskLevel.LOW
        assert result.reasons == ("Ubicación no disponible",)

    def test_unusual_hour_and_high_amount_lands_in_warn_band(self, engine, make_context):
        profile = _established(
            transaction_count = 25,
            hour_counts       = {8: 10, 9: 10, 10: 5},
        )
        ctx = make_context(amount=15000)
        result = engine.score(ctx, profile, velocity=VelocityWindow())

        # 17.5 (monto alto) + 10.5 (hora atípica) + 3 (ubicación)
        assert result.total_score == 31
        assert result.risk_level == RiskLevel.MEDIUM
        assert result.suggested_decision == DecisionAction.WARN

    def test_circle_report_adds_fixed_penalty(self, engine, make_context):
        ctx = make_context(amount=3000)
        result = engine.score(ctx, _established(), velocity=VelocityWindow(), circle_reported=True)

        assert result.contributions[RiskFactor.CIRCLE_REPORT.value] == 40
        assert result.total_score == 43
        assert result.circle_reported is True


class TestReputationOverrides:

    def test_whitelist_short_circuits_to_zero(self, engine, make_context):
        ctx = make_context(amount=90000, device_id=None)
        verdict = ReputationVerdict(flagged=False, whitelisted=True, source="whitelist")
        result = engine.score(ctx, None, reputation=verdict)

        assert result.total_score == 0
        assert result.risk_level == RiskLevel.LOW
        assert result.whitelist_hit is True
        assert result.contributions == {RiskFactor.WHITELIST_HIT.value: -100.0}

    def test_blacklist_forces_maximum(self, engine, make_context):
        verdict = ReputationVerdict(flagged=True, tier=RiskTier.HIGH, reason="scam")
        result = engine.score(make_context(amount=10), _established(), reputation=verdict)

        assert result.total_score == 100
        assert result.risk_level == RiskLevel.CRITICAL
        assert result.blacklist_hit is True
        assert "scam" in result.reasons[0]


class TestDegradation:

    def test_missing_history_degrades_history_factors(self, engine, make_context):
        result = engine.score(make_context(amount=75000), None, velocity=VelocityWindow())

        assert set(result.degraded_factors) == {
            RiskFactor.AMOUNT_ANOMALY.value,
            RiskFactor.TIME_PATTERN.value,
            RiskFactor.NEW_PAYEE.value,
            RiskFactor.DEVICE_FINGERPRINT.value,
            RiskFactor.LOCATION_ANOMALY.value,
        }
        for factor in result.degraded_factors:
            assert result.contributions[factor] == 0.0
        # Solo la velocidad aporta: 75000 > 50000 → 90 × 10 / 100
        assert result.total_score == 9
        assert any("datos no disponibles" in r for r in result.reasons)

    def test_missing_velocity_degrades_only_velocity(self, engine, make_context):
        result = engine.score(make_context(), _established(), velocity=None)

        assert result.degraded_factors == (RiskFactor.VELOCITY_CHECK.value,)
        assert result.total_score == 3


class TestFactors:

    def test_placeholder_device_counts_as_missing(self, engine, make_context):
        result = engine.score(
            make_context(device_id="unknown"), _established(), velocity=VelocityWindow()
        )
        assert result.contributions[RiskFactor.DEVICE_FINGERPRINT.value] == pytest.approx(9.0)

    def test_different_city_scores_location(self, engine, make_context):
        result = engine.score(
            make_context(city="Guadalajara"), _established(), velocity=VelocityWindow()
        )
        assert result.contributions[RiskFactor.LOCATION_ANOMALY.value] == pytest.approx(7.0)

    def test_velocity_count_includes_current_payment(self, engine, make_context):
        result = engine.score(
            make_context(city="Monterrey"), _established(),
            velocity=VelocityWindow(count=2, total_amount=4000),
        )
        assert result.contributions[RiskFactor.VELOCITY_CHECK.value] == pytest.approx(8.0)
        assert result.total_score == 8

    def test_velocity_amount_takes_precedence_over_count(self, engine, make_context):
        result = engine.score(
            make_context(city="Monterrey", amount=20000), _established(),
            velocity=VelocityWindow(count=5, total_amount=40000),
        )
        assert result.contributions[RiskFactor.VELOCITY_CHECK.value] == pytest.approx(9.0)

    def test_hours_evaluated_in_local_timezone(self, make_context):
        engine = RiskScoringEngine(tz=ZoneInfo("America/Mexico_City"))
        # 20:00 UTC = 14:00 en Ciudad de México (UTC-6)
        ctx = make_context(timestamp=datetime(2026, 3, 10, 20, 0, tzinfo=timezone.utc))
        result = engine.score(ctx, _established(), velocity=VelocityWindow())
        assert result.contributions[RiskFactor.TIME_PATTERN.value] == 0


class TestWeightsAndInvariants:

    def test_adaptive_weights_replace_defaults(self, engine, make_context):
        weights = {RiskFactor.LOCATION_ANOMALY.value: 50.0}
        result = engine.score(make_context(), _established(), weights=weights, velocity=VelocityWindow())
        assert result.total_score == 15

    def test_disabled_learning_uses_defaults(self, engine, make_context):
        weights = {RiskFactor.LOCATION_ANOMALY.value: 50.0}
        result = engine.score(
            make_context(), _established(), weights=weights,
            velocity=VelocityWindow(), learning_enabled=False,
        )
        assert result.total_score == 3

    def test_scoring_is_deterministic(self, engine, make_context):
        ctx = make_context(amount=15000, payee="bob@upi")
        first  = engine.score(ctx, _established(), velocity=VelocityWindow())
        second = engine.score(ctx, _established(), velocity=VelocityWindow())
        assert first == second

    def test_score_never_decreases_when_amount_grows(self, engine, make_context):
        scores = [
            engine.score(make_context(amount=a), _established(), velocity=VelocityWindow()).total_score
            for a in (1000, 5000, 15000, 30000, 60000, 200000)
        ]
        assert scores == sorted(scores)
        assert all(0 <= s <= 100 for s in scores)

    def test_score_is_clamped_to_100(self, engine, make_context):
        weights = {f: 50.0 for f in (
            "AMOUNT_ANOMALY", "TIME_PATTERN", "NEW_PAYEE",
            "DEVICE_FINGERPRINT", "LOCATION_ANOMALY", "VELOCITY_CHECK",
        )}
        ctx = make_context(
            amount=90000, payee="x@upi", device_id="other",
            timestamp=datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc),
        )
        result = engine.score(ctx, UserHistoryProfile.empty(), weights=weights,
                              velocity=VelocityWindow(), circle_reported=True)
        assert result.total_score == 100


class TestConfiguration:

    def test_update_merges_weights(self, engine):
        cfg = engine.update_config({"default_weights": {RiskFactor.NEW_PAYEE: 30.0}})
        assert cfg.default_weights[RiskFactor.NEW_PAYEE] == 30.0
        assert cfg.default_weights[RiskFactor.AMOUNT_ANOMALY] == 25.0

    def test_invalid_update_keeps_previous_config(self, engine):
        before = engine.get_config()
        with pytest.raises(InvalidConfigurationException):
            engine.update_config({"high_amount": 90000})
        with pytest.raises(InvalidConfigurationException):
            engine.update_config({"default_weights": {RiskFactor.NEW_PAYEE: 80.0}})
        assert engine.get_config() is before
