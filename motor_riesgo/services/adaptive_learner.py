"""
adaptive_learner.py
-------------------
Ajusta los pesos por usuario a partir del feedback posterior al pago.

  "not_fraud" sobre un WARN / DELAY / BLOCK  → falso positivo
      cada factor ordinario que aportó puntos baja peso × 0.15 (piso 5)
  "confirmed_fraud" sobre un APPROVE o score < 60 → falso negativo
      todos los factores ordinarios suben peso × 0.15 (techo 50)
  cualquier otro caso → solo se cuentan estadísticas

BLACKLIST_HIT y WHITELIST_HIT nunca se tocan.

Los pesos viven en el registro del usuario. Cada escritura es un
compare-and-swap sobre la versión: si otro feedback del mismo usuario
escribió primero, se relee y se reintenta.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Mapping, Optional

from motor_riesgo.core.exceptions import LearningConflictException, UserNotFoundException
from motor_riesgo.domain.entities import (
    MAX_WEIGHT,
    MIN_WEIGHT,
    ORDINARY_FACTORS,
    LearningStats,
    TransactionRecord,
    UserLearningState,
    default_weight_table,
)
from motor_riesgo.domain.ports import UserHistoryStore
from motor_riesgo.domain.schemas import DecisionAction, FeedbackType

logger = logging.getLogger(__name__)

ADJUSTMENT_RATE        = 0.15
FALSE_NEGATIVE_SCORE   = 60
MAX_WRITE_ATTEMPTS     = 5

_FLAGGED_ACTIONS = {DecisionAction.WARN, DecisionAction.DELAY, DecisionAction.BLOCK}
_ORDINARY_NAMES  = tuple(f.value for f in ORDINARY_FACTORS)


class Adjustment(str, Enum):
    FALSE_POSITIVE = "false_positive"
    FALSE_NEGATIVE = "false_negative"
    NONE           = "none"


@dataclass
class FeedbackOutcome:
    transaction_id:   str
    adjustment:       Adjustment
    weights:          dict[str, float]
    stats:            LearningStats
    learning_enabled: bool


def classify_feedback(
    action: Optional[DecisionAction], score: Optional[int], feedback: FeedbackType
) -> Adjustment:
    if feedback == FeedbackType.NOT_FRAUD and action in _FLAGGED_ACTIONS:
        return Adjustment.FALSE_POSITIVE
    if feedback == FeedbackType.CONFIRMED_FRAUD and (
        action == DecisionAction.APPROVE or (score is not None and score < FALSE_NEGATIVE_SCORE)
    ):
        return Adjustment.FALSE_NEGATIVE
    return Adjustment.NONE


def adjust_weights(
    weights:      Mapping[str, float],
    adjustment:   Adjustment,
    contributing: list[str],
    rate:         float = ADJUSTMENT_RATE,
) -> dict[str, float]:
    adjusted = dict(weights)
    if adjustment == Adjustment.FALSE_POSITIVE:
        for name in contributing:
            if name in _ORDINARY_NAMES and name in adjusted:
                w = adjusted[name]
                adjusted[name] = round(max(MIN_WEIGHT, w - w * rate), 4)
    elif adjustment == Adjustment.FALSE_NEGATIVE:
        for name in _ORDINARY_NAMES:
            if name in adjusted:
                w = adjusted[name]
                adjusted[name] = round(min(MAX_WEIGHT, w + w * rate), 4)
    return adjusted


class AdaptiveWeightLearner:

    def __init__(
        self,
        history:      UserHistoryStore,
        rate:         float = ADJUSTMENT_RATE,
        max_attempts: int = MAX_WRITE_ATTEMPTS,
    ):
        self.history      = history
        self.rate         = rate
        self.max_attempts = max_attempts

    async def apply_feedback(
        self,
        user_id:       str,
        transaction:   TransactionRecord,
        feedback_type: FeedbackType,
    ) -> FeedbackOutcome:
        adjustment = classify_feedback(transaction.action, transaction.risk_score, feedback_type)
        contributing = [
            name for name, points in transaction.breakdown.items()
            if name in _ORDINARY_NAMES and points > 0
        ]

        for attempt in range(1, self.max_attempts + 1):
            state = await self._load(user_id)
            now   = datetime.now(timezone.utc)

            weights = state.weights
            if state.learning_enabled:
                weights = adjust_weights(state.weights, adjustment, contributing, self.rate)

            stats = LearningStats(
                total_feedback     = state.stats.total_feedback + 1,
                false_positives    = state.stats.false_positives
                                     + (adjustment == Adjustment.FALSE_POSITIVE),
                false_negatives    = state.stats.false_negatives
                                     + (adjustment == Adjustment.FALSE_NEGATIVE),
                last_adjustment_at = now,
            )
            updated = UserLearningState(
                user_id          = user_id,
                weights          = weights,
                stats            = stats,
                learning_enabled = state.learning_enabled,
                version          = state.version + 1,
            )

            if await self.history.save_learning_state(updated, expected_version=state.version):
                logger.info(
                    f"[Learner] user={user_id}  tx={transaction.id}  "
                    f"ajuste={adjustment.value}  factores={contributing}  "
                    f"confidence={stats.confidence:.1f}"
                )
                return FeedbackOutcome(
                    transaction_id   = transaction.id,
                    adjustment       = adjustment,
                    weights          = weights,
                    stats            = stats,
                    learning_enabled = state.learning_enabled,
                )

            logger.warning(
                f"[Learner] Conflicto de versión user={user_id} (intento {attempt})"
            )

        raise LearningConflictException()

    async def reset_weights(self, user_id: str) -> UserLearningState:
        """Restaura la tabla base y estadísticas en cero en una sola escritura."""
        for _ in range(self.max_attempts):
            state = await self._load(user_id)
            reset = UserLearningState(
                user_id          = user_id,
                weights          = default_weight_table(),
                stats            = LearningStats(),
                learning_enabled = state.learning_enabled,
                version          = state.version + 1,
            )
            if await self.history.save_learning_state(reset, expected_version=state.version):
                logger.info(f"[Learner] Pesos reseteados user={user_id}")
                return reset
        raise LearningConflictException()

    async def get_stats(self, user_id: str) -> UserLearningState:
        return await self._load(user_id)

    async def set_learning_enabled(self, user_id: str, enabled: bool) -> UserLearningState:
        await self._load(user_id)
        await self.history.set_learning_enabled(user_id, enabled)
        logger.info(f"[Learner] Aprendizaje {'activado' if enabled else 'desactivado'} user={user_id}")
        return await self._load(user_id)

    async def backfill_defaults(self) -> int:
        """Migración de arranque: usuarios sin pesos reciben la tabla base."""
        updated = await self.history.backfill_default_weights(default_weight_table())
        if updated:
            logger.info(f"[Learner] Backfill de pesos base en {updated} usuarios")
        return updated

    async def _load(self, user_id: str) -> UserLearningState:
        state = await self.history.get_learning_state(user_id)
        if state is None:
            raise UserNotFoundException()
        return state
