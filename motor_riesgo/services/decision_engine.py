"""
decision_engine.py
------------------
Convierte una RiskAssessment + flags de override en una acción:
APPROVE / WARN / DELAY / BLOCK.

Orden de evaluación (gana la primera regla que aplica):
  1. Force-approve administrativo (requiere identidad que autoriza)
  2. Lista negra       → BLOCK permanente (solo metadata de apelación)
  3. Lista blanca      → APPROVE confiable
  4. Micro-transacción → APPROVE (monto < piso configurable)
  5. score < WARN      → APPROVE
  6. score ≥ BLOCK     → BLOCK con ventana de apelación
  7. score ≥ DELAY     → DELAY con expires_at
  8. score ≥ WARN      → WARN, requiere confirmación del usuario
  9. resto             → APPROVE

Un DELAY no expira solo: el usuario lo confirma después de expires_at
o lo bloquea en cualquier momento. La expiración es un timestamp.

La configuración es un objeto inmutable que se reemplaza completo en
cada actualización válida; una actualización inválida no toca la vigente.
"""

import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from motor_riesgo.core.exceptions import InvalidConfigurationException
from motor_riesgo.domain.entities import Decision, OverrideFlags, RiskAssessment
from motor_riesgo.domain.schemas import DecisionAction, RiskLevel, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecisionConfig:
    block_threshold:             int   = 80
    delay_threshold:             int   = 60
    warn_threshold:              int   = 30
    micro_amount_floor:          float = 1000
    high_risk_delay_seconds:     int   = 300
    critical_risk_delay_seconds: int   = 600
    appeal_window_hours:         int   = 24

    def validate(self) -> None:
        if not (0 < self.warn_threshold < self.delay_threshold < self.block_threshold <= 100):
            raise InvalidConfigurationException(
                "Los umbrales deben cumplir 0 < WARN < DELAY < BLOCK <= 100."
            )
        if self.micro_amount_floor < 0:
            raise InvalidConfigurationException("micro_amount_floor no puede ser negativo.")
        if self.high_risk_delay_seconds <= 0 or self.critical_risk_delay_seconds <= 0:
            raise InvalidConfigurationException("Las duraciones de espera deben ser positivas.")
        if self.appeal_window_hours <= 0:
            raise InvalidConfigurationException("appeal_window_hours debe ser positivo.")

    def to_dict(self) -> dict:
        return asdict(self)


# Quién puede anular cada acción
_OVERRIDE_PERMISSIONS: dict[DecisionAction, set[UserRole]] = {
    DecisionAction.BLOCK: {UserRole.SUPERADMIN},
    DecisionAction.DELAY: {UserRole.ADMIN, UserRole.SUPERADMIN},
    DecisionAction.WARN:  {UserRole.USER, UserRole.ADMIN, UserRole.SUPERADMIN},
}


class DecisionEngine:

    def __init__(self, config: Optional[DecisionConfig] = None):
        self._config = config or DecisionConfig()
        self._config.validate()

    # ------------------------------------------------------------------ #
    #  Configuración                                                     #
    # ------------------------------------------------------------------ #

    def get_config(self) -> DecisionConfig:
        return self._config

    def update_config(self, changes: Mapping) -> DecisionConfig:
        changes = {k: v for k, v in changes.items() if v is not None}
        for key, value in changes.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidConfigurationException(f"{key} debe ser numérico.")
        try:
            candidate = replace(self._config, **changes)
        except TypeError as e:
            raise InvalidConfigurationException(f"Parámetro desconocido: {e}")
        candidate.validate()
        self._config = candidate
        logger.info(f"[Decision] Configuración actualizada: {candidate.to_dict()}")
        return candidate

    # ------------------------------------------------------------------ #
    #  Decisión                                                          #
    # ------------------------------------------------------------------ #

    def decide(
        self,
        assessment: RiskAssessment,
        overrides:  Optional[OverrideFlags] = None,
        now:        Optional[datetime] = None,
    ) -> Decision:
        cfg       = self._config
        overrides = overrides or OverrideFlags()
        now       = now or datetime.now(timezone.utc)
        score     = assessment.total_score
        reasons   = list(assessment.reasons)

        action, metadata, headline = self._determine_action(assessment, overrides, now)

        logger.info(
            f"[Decision] {action.value}  score={score}  "
            f"level={assessment.risk_level.value}  thresholds="
            f"{cfg.warn_threshold}/{cfg.delay_threshold}/{cfg.block_threshold}"
        )
        return Decision(
            action     = action,
            score      = score,
            risk_level = assessment.risk_level,
            reasons    = [headline, *reasons] if headline else reasons,
            metadata   = metadata,
            decided_at = now,
        )

    def _determine_action(
        self,
        assessment: RiskAssessment,
        overrides:  OverrideFlags,
        now:        datetime,
    ) -> tuple[DecisionAction, dict, str]:
        cfg   = self._config
        score = assessment.total_score

        if overrides.force_approve:
            if overrides.approved_by:
                return DecisionAction.APPROVE, {
                    "override":    True,
                    "approved_by": overrides.approved_by,
                }, f"Aprobado manualmente por {overrides.approved_by}"
            logger.warning("[Decision] force_approve sin identidad que autorice — ignorado")

        if assessment.blacklist_hit:
            return DecisionAction.BLOCK, {
                "permanent":           True,
                "blacklisted":         True,
                "can_appeal":          False,
                "appeal_window_hours": cfg.appeal_window_hours,
            }, "Bloqueado: destinatario en lista negra"

        if assessment.whitelist_hit:
            return DecisionAction.APPROVE, {"trusted": True}, "Destinatario de confianza"

        if assessment.amount < cfg.micro_amount_floor:
            return DecisionAction.APPROVE, {
                "micro_transaction": True,
                "floor":             cfg.micro_amount_floor,
            }, ""

        if score < cfg.warn_threshold:
            return DecisionAction.APPROVE, {}, ""

        if score >= cfg.block_threshold:
            deadline = now + timedelta(hours=cfg.appeal_window_hours)
            return DecisionAction.BLOCK, {
                "permanent":           False,
                "can_appeal":          True,
                "appeal_window_hours": cfg.appeal_window_hours,
                "appeal_deadline":     deadline.isoformat(),
            }, "Bloqueado por riesgo alto, puedes apelar"

        if score >= cfg.delay_threshold:
            seconds = (
                cfg.critical_risk_delay_seconds
                if assessment.risk_level == RiskLevel.CRITICAL
                else cfg.high_risk_delay_seconds
            )
            expires_at = now + timedelta(seconds=seconds)
            return DecisionAction.DELAY, {
                "delay_seconds": seconds,
                "delay_minutes": seconds // 60,
                "expires_at":    expires_at.isoformat(),
                "can_cancel":    True,
            }, f"Pago en espera de seguridad por {seconds // 60} minutos"

        if score >= cfg.warn_threshold:
            return DecisionAction.WARN, {
                "requires_confirmation": True,
            }, "Confirma que reconoces este pago"

        return DecisionAction.APPROVE, {}, ""

    def fail_safe(self, amount: float, error: str, now: Optional[datetime] = None) -> Decision:
        """Decisión cuando el scoring no pudo completarse: nunca APPROVE silencioso."""
        logger.error(f"[Decision] Fail-safe WARN — {error}")
        return Decision(
            action     = DecisionAction.WARN,
            score      = self._config.warn_threshold,
            risk_level = RiskLevel.MEDIUM,
            reasons    = ["No pudimos evaluar el riesgo de este pago, confirma para continuar"],
            metadata   = {"requires_confirmation": True, "degraded": True, "amount": amount},
            decided_at = now or datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------ #
    #  Utilidades                                                        #
    # ------------------------------------------------------------------ #

    @staticmethod
    def can_proceed_after_delay(metadata: Mapping, now: Optional[datetime] = None) -> bool:
        raw = metadata.get("expires_at")
        if not raw:
            return False
        expires_at = datetime.fromisoformat(raw)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return (now or datetime.now(timezone.utc)) >= expires_at

    @staticmethod
    def can_override(action: DecisionAction, role: UserRole) -> bool:
        return role in _OVERRIDE_PERMISSIONS.get(action, set())

    @staticmethod
    def alert_message(decision: Decision, amount: float, payee: str) -> Optional[str]:
        if decision.action == DecisionAction.APPROVE:
            return None
        detail = ", ".join(decision.reasons[1:3]) or "Múltiples factores de riesgo"
        if decision.action == DecisionAction.BLOCK:
            return f"BLOQUEADO: {amount:,.2f} a {payee}. Motivo: {detail}"
        if decision.action == DecisionAction.DELAY:
            minutes = decision.metadata.get("delay_minutes", 5)
            return f"EN ESPERA: {amount:,.2f} a {payee} por {minutes} min. {detail}"
        return f"ADVERTENCIA: {amount:,.2f} a {payee}. {detail}"
