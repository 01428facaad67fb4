"""
risk_orchestrator.py
--------------------
Orquestador del Motor de Riesgo P2P.

No contiene lógica de detección propia: coordina reputación, scoring,
decisión, persistencia y notificación.

Flujo de ejecución:
  1. Reputación del destinatario   corto circuito si está en lista
                                   blanca o negra
  2. asyncio.gather paralelo
       ├─ UserHistoryStore.get_profile         perfil de 90 días
       ├─ UserHistoryStore.get_learning_state  pesos adaptativos
       ├─ UserHistoryStore.has_circle_report   reporte del círculo
       ├─ UserHistoryStore.get_velocity_window ventana de 30 min
       └─ GeoResolver.resolve                  solo si hay GPS
  3. RiskScoringEngine.score       insumos fallidos → factor en 0
  4. DecisionEngine.decide         APPROVE / WARN / DELAY / BLOCK
  5. Registro de la transacción    con score, desglose y metadata
  6. Notificación                  fire-and-forget, no bloquea la respuesta

Si el scoring no puede completarse la decisión es WARN (fail-safe),
nunca un APPROVE silencioso.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from motor_riesgo.core.exceptions import (
    DelayNotExpiredException,
    DuplicateFeedbackException,
    InvalidTransactionStateException,
    OverrideNotAllowedException,
    TransactionNotFoundException,
)
from motor_riesgo.domain.entities import (
    Decision,
    GeoLocation,
    OverrideFlags,
    ReputationVerdict,
    RiskAssessment,
    TransactionContext,
    TransactionRecord,
)
from motor_riesgo.domain.ports import GeoResolver, Notifier, UserHistoryStore
from motor_riesgo.domain.schemas import (
    DecisionAction,
    FeedbackType,
    TransactionStatus,
    UserRole,
)
from motor_riesgo.services.adaptive_learner import AdaptiveWeightLearner, FeedbackOutcome
from motor_riesgo.services.decision_engine import DecisionEngine
from motor_riesgo.services.reputation_cache import ReputationCache
from motor_riesgo.services.risk_scoring_engine import RiskScoringEngine

logger = logging.getLogger(__name__)

_STATUS_FOR_ACTION = {
    DecisionAction.APPROVE: TransactionStatus.COMPLETED,
    DecisionAction.WARN:    TransactionStatus.PENDING,
    DecisionAction.DELAY:   TransactionStatus.DELAYED,
    DecisionAction.BLOCK:   TransactionStatus.BLOCKED,
}


@dataclass
class EvaluationResult:
    transaction_id: str
    decision:       Decision
    assessment:     Optional[RiskAssessment]
    alert_message:  Optional[str]


class RiskOrchestrator:

    def __init__(
        self,
        reputation: ReputationCache,
        scoring:    RiskScoringEngine,
        decisions:  DecisionEngine,
        learner:    AdaptiveWeightLearner,
        history:    UserHistoryStore,
        notifier:   Notifier,
        geo:        Optional[GeoResolver] = None,
    ):
        self.reputation = reputation
        self.scoring    = scoring
        self.decisions  = decisions
        self.learner    = learner
        self.history    = history
        self.notifier   = notifier
        self.geo        = geo
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    #  Evaluación                                                        #
    # ------------------------------------------------------------------ #

    async def evaluate_transaction(
        self,
        context:   TransactionContext,
        overrides: Optional[OverrideFlags] = None,
    ) -> EvaluationResult:
        transaction_id = str(uuid.uuid4())
        notes: dict = {}

        try:
            await self.history.ensure_user(context.user_id)
        except Exception as e:
            logger.error(f"[Orchestrator] No se pudo registrar user={context.user_id}: {e}")

        # ══════════════════════════════════════════════════════════════
        # PASO 1 — Reputación
        # ══════════════════════════════════════════════════════════════
        verdict: Optional[ReputationVerdict] = None
        try:
            verdict = await self.reputation.check(context.payee)
        except Exception as e:
            logger.error(f"[Orchestrator] Reputación no disponible para {context.payee}: {e}")
            notes["reputation_unavailable"] = True

        try:
            if verdict is not None and (verdict.whitelisted or verdict.flagged):
                assessment = self.scoring.score(context, None, reputation=verdict)
            else:
                assessment, context = await self._score(context, verdict)
            decision = self.decisions.decide(assessment, overrides)
        except Exception as e:
            assessment = None
            decision   = self.decisions.fail_safe(context.amount, str(e))

        decision.metadata.update(notes)

        # ══════════════════════════════════════════════════════════════
        # PASO 5 — Persistencia
        # ══════════════════════════════════════════════════════════════
        record = self._build_record(transaction_id, context, assessment, decision)
        try:
            await self.history.save_transaction(record)
        except Exception as e:
            logger.error(f"[Orchestrator] Error persistiendo tx={transaction_id}: {e}")

        alert = self.decisions.alert_message(decision, context.amount, context.payee)

        # ══════════════════════════════════════════════════════════════
        # PASO 6 — Notificación en background
        # ══════════════════════════════════════════════════════════════
        if decision.action != DecisionAction.APPROVE:
            self._spawn(self._notify(context, decision, alert))

        return EvaluationResult(
            transaction_id = transaction_id,
            decision       = decision,
            assessment     = assessment,
            alert_message  = alert,
        )

    async def _score(
        self, context: TransactionContext, verdict: Optional[ReputationVerdict]
    ) -> tuple[RiskAssessment, TransactionContext]:
        """Retorna la evaluación y una copia del contexto con la ciudad resuelta."""
        tasks = [
            self.history.get_profile(context.user_id, context.timestamp),       # → UserHistoryProfile
            self.history.get_learning_state(context.user_id),                   # → UserLearningState
            self.history.has_circle_report(context.user_id, context.payee),     # → bool
            self.history.get_velocity_window(                                   # → VelocityWindow
                context.user_id, self.scoring.velocity_window_start(context.timestamp)
            ),
        ]
        if self.geo is not None and context.geo is not None and not context.city:
            tasks.append(self.geo.resolve(context.geo.latitude, context.geo.longitude))

        raw = await asyncio.gather(*tasks, return_exceptions=True)

        profile  = self._safe_result(raw[0], "history")
        state    = self._safe_result(raw[1], "learning_state")
        circle   = self._safe_result(raw[2], "circle")
        velocity = self._safe_result(raw[3], "velocity")
        if len(raw) > 4:
            location = self._safe_result(raw[4], "geo") or GeoLocation.unknown()
            if location.is_known:
                context = replace(context, city=location.city)

        assessment = self.scoring.score(
            context,
            profile,
            weights          = state.weights if state else None,
            reputation       = verdict,
            circle_reported  = bool(circle),
            velocity         = velocity,
            learning_enabled = state.learning_enabled if state else True,
        )
        return assessment, context

    def _build_record(
        self,
        transaction_id: str,
        context:        TransactionContext,
        assessment:     Optional[RiskAssessment],
        decision:       Decision,
    ) -> TransactionRecord:
        return TransactionRecord(
            id         = transaction_id,
            user_id    = context.user_id,
            payee      = context.payee,
            payee_name = context.payee_name,
            amount     = context.amount,
            status     = _STATUS_FOR_ACTION[decision.action],
            created_at = context.timestamp,
            device_id  = context.device_id,
            city       = context.city,
            latitude   = context.geo.latitude if context.geo else None,
            longitude  = context.geo.longitude if context.geo else None,
            risk_score = decision.score,
            risk_level = decision.risk_level,
            action     = decision.action,
            breakdown  = dict(assessment.contributions) if assessment else {},
            reasons    = list(decision.reasons),
            metadata   = dict(decision.metadata),
        )

    # ------------------------------------------------------------------ #
    #  Acciones posteriores sobre la transacción                         #
    # ------------------------------------------------------------------ #

    async def get_transaction(self, user_id: str, transaction_id: str) -> TransactionRecord:
        record = await self.history.get_transaction(transaction_id)
        if record is None or record.user_id != user_id:
            raise TransactionNotFoundException()
        return record

    async def confirm_transaction(
        self, user_id: str, transaction_id: str, role: UserRole = UserRole.USER
    ) -> TransactionRecord:
        """
        WARN  → el usuario confirma y el pago se completa.
        DELAY → solo después de expires_at (o con rol que pueda saltar la espera).
        """
        record = await self.get_transaction(user_id, transaction_id)
        now = datetime.now(timezone.utc)

        if record.status == TransactionStatus.PENDING:
            record.metadata["confirmed_at"] = now.isoformat()
        elif record.status == TransactionStatus.DELAYED:
            expired = self.decisions.can_proceed_after_delay(record.metadata, now)
            if not expired and not self.decisions.can_override(DecisionAction.DELAY, role):
                raise DelayNotExpiredException()
            record.metadata["confirmed_at"] = now.isoformat()
            record.metadata["delay_skipped"] = not expired
        else:
            raise InvalidTransactionStateException()

        record.status = TransactionStatus.COMPLETED
        await self.history.update_transaction(record)
        logger.info(f"[Orchestrator] tx={transaction_id} confirmada por user={user_id}")
        return record

    async def block_transaction_now(self, user_id: str, transaction_id: str) -> TransactionRecord:
        record = await self.get_transaction(user_id, transaction_id)
        if record.status not in (TransactionStatus.PENDING, TransactionStatus.DELAYED):
            raise InvalidTransactionStateException()

        record.status = TransactionStatus.BLOCKED
        record.metadata["blocked_by_user"] = True
        record.metadata["blocked_at"] = datetime.now(timezone.utc).isoformat()
        await self.history.update_transaction(record)
        logger.info(f"[Orchestrator] tx={transaction_id} bloqueada por user={user_id}")
        return record

    async def override_transaction(
        self, transaction_id: str, admin_id: str, role: UserRole
    ) -> TransactionRecord:
        record = await self.history.get_transaction(transaction_id)
        if record is None:
            raise TransactionNotFoundException()
        if record.status not in (
            TransactionStatus.PENDING, TransactionStatus.DELAYED, TransactionStatus.BLOCKED
        ):
            raise InvalidTransactionStateException()
        if record.action is None or not self.decisions.can_override(record.action, role):
            raise OverrideNotAllowedException()

        record.status = TransactionStatus.COMPLETED
        record.metadata["override"] = True
        record.metadata["approved_by"] = admin_id
        await self.history.update_transaction(record)
        logger.warning(
            f"[Orchestrator] Override de {record.action.value} tx={transaction_id} "
            f"por {admin_id} ({role.value})"
        )
        return record

    async def submit_feedback(
        self,
        user_id:        str,
        transaction_id: str,
        feedback_type:  FeedbackType,
        comment:        Optional[str] = None,
    ) -> FeedbackOutcome:
        record = await self.get_transaction(user_id, transaction_id)
        if record.feedback_type is not None:
            raise DuplicateFeedbackException()
        if not await self.history.mark_feedback(transaction_id, feedback_type, comment):
            raise DuplicateFeedbackException()
        try:
            return await self.learner.apply_feedback(user_id, record, feedback_type)
        except Exception as e:
            # Sin ajuste de pesos el feedback no cuenta: se libera para reintentar
            logger.error(
                f"[Orchestrator] Feedback tx={transaction_id} no aplicado, se revierte: {e}"
            )
            await self.history.clear_feedback(transaction_id, feedback_type)
            raise

    # ------------------------------------------------------------------ #
    #  Utilidades                                                        #
    # ------------------------------------------------------------------ #

    def _safe_result(self, result, module_name: str):
        """None si el insumo falló: el scoring degrada los factores que dependen de él."""
        if isinstance(result, Exception):
            logger.error(f"[Orchestrator] Insumo '{module_name}' falló: {result}")
            return None
        return result

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _notify(
        self, context: TransactionContext, decision: Decision, message: Optional[str]
    ) -> None:
        try:
            await self.notifier.alert(
                context.user_id,
                decision,
                {"payee": context.payee, "amount": context.amount, "message": message},
            )
        except Exception as e:
            logger.error(f"[Background] Error notificando user={context.user_id}: {e}")
