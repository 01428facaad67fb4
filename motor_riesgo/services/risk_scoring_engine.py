"""
risk_scoring_engine.py
----------------------
Score de riesgo compuesto (0-100) para un pago P2P.

Cada factor produce un sub-score en [0, 100] y una razón legible; su
aporte al total es (sub_score / 100) × peso_del_factor. Los pesos son
los adaptativos del usuario (si tiene el aprendizaje activo) mezclados
sobre la tabla base.

Factores:
  AMOUNT_ANOMALY      monto vs umbrales absolutos y vs promedio del usuario
  TIME_PATTERN        hora del día vs horas típicas y ventana nocturna
  NEW_PAYEE           primer pago a este destinatario
  DEVICE_FINGERPRINT  dispositivo faltante o nunca visto
  LOCATION_ANOMALY    ciudad actual vs ciudad más frecuente
  VELOCITY_CHECK      cantidad y monto acumulado en la ventana de 30 min
  CIRCLE_REPORT       alguien del círculo de confianza reportó al destinatario
                      (penalización fija, no se adapta)

Overrides de reputación (prioridad absoluta):
  lista blanca → score 0,   LOW,      APPROVE
  lista negra  → score 100, CRITICAL, BLOCK

Si un factor falla (o su insumo no está disponible) aporta 0 y deja una
razón explicando la omisión. La evaluación siempre se completa.
"""

import logging
import math
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, Mapping, Optional

from motor_riesgo.core.exceptions import InvalidConfigurationException
from motor_riesgo.domain.entities import (
    DEFAULT_WEIGHTS,
    MAX_WEIGHT,
    MIN_WEIGHT,
    ORDINARY_FACTORS,
    OVERRIDE_WEIGHTS,
    ReputationVerdict,
    RiskAssessment,
    TransactionContext,
    UserHistoryProfile,
    VelocityWindow,
)
from motor_riesgo.domain.schemas import DecisionAction, RiskFactor, RiskLevel
from motor_riesgo.services.time_pattern_scorer import TimePatternScorer

logger = logging.getLogger(__name__)

# ── Bandas de nivel de riesgo ─────────────────────────────────────────
LEVEL_CRITICAL = 80
LEVEL_HIGH     = 60
LEVEL_MEDIUM   = 30

# ── Historial mínimo por factor ───────────────────────────────────────
MIN_TX_FOR_AVERAGE  = 3
MIN_TX_FOR_LOCATION = 5

# Ids de dispositivo que los clientes mandan cuando no tienen uno real
_PLACEHOLDER_DEVICES = {"", "unknown", "unknown-device", "null", "none", "undefined"}

_HISTORY_FACTORS = (
    RiskFactor.AMOUNT_ANOMALY,
    RiskFactor.TIME_PATTERN,
    RiskFactor.NEW_PAYEE,
    RiskFactor.DEVICE_FINGERPRINT,
    RiskFactor.LOCATION_ANOMALY,
)


@dataclass(frozen=True)
class ScoringConfig:
    """Parámetros del scoring administrables en caliente."""
    default_weights:         Mapping[RiskFactor, float] = field(
        default_factory=lambda: dict(DEFAULT_WEIGHTS)
    )
    high_amount:             float = 10_000
    very_high_amount:        float = 50_000
    velocity_window_minutes: int   = 30
    velocity_count:          int   = 3
    velocity_amount:         float = 50_000
    circle_report_penalty:   float = 40

    def validate(self) -> None:
        if self.very_high_amount <= self.high_amount:
            raise InvalidConfigurationException(
                "very_high_amount debe ser mayor que high_amount."
            )
        if self.velocity_window_minutes <= 0 or self.velocity_count < 2:
            raise InvalidConfigurationException(
                "Ventana de velocidad inválida (minutos > 0, conteo >= 2)."
            )
        if self.velocity_amount <= 0 or not (0 <= self.circle_report_penalty <= 100):
            raise InvalidConfigurationException(
                "Monto de velocidad debe ser > 0 y la penalización de círculo 0-100."
            )
        for factor in ORDINARY_FACTORS:
            weight = self.default_weights.get(factor)
            if weight is None or not (MIN_WEIGHT <= weight <= MAX_WEIGHT):
                raise InvalidConfigurationException(
                    f"Peso de {factor.value} fuera de rango [{MIN_WEIGHT}, {MAX_WEIGHT}]."
                )
        extra = set(self.default_weights) - set(ORDINARY_FACTORS)
        if extra:
            raise InvalidConfigurationException(
                f"Factores no ajustables: {sorted(f.value for f in extra)}."
            )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["default_weights"] = {f.value: w for f, w in self.default_weights.items()}
        return data


@dataclass
class FactorScore:
    score:  int
    reason: str = ""


def risk_level_for(score: int) -> RiskLevel:
    if score >= LEVEL_CRITICAL:
        return RiskLevel.CRITICAL
    if score >= LEVEL_HIGH:
        return RiskLevel.HIGH
    if score >= LEVEL_MEDIUM:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def suggested_decision_for(score: int) -> DecisionAction:
    """Informativo: el DecisionEngine es la autoridad final."""
    if score >= LEVEL_CRITICAL:
        return DecisionAction.BLOCK
    if score >= LEVEL_HIGH:
        return DecisionAction.DELAY
    if score >= LEVEL_MEDIUM:
        return DecisionAction.WARN
    return DecisionAction.APPROVE


class RiskScoringEngine:

    def __init__(self, config: Optional[ScoringConfig] = None, tz: tzinfo = timezone.utc):
        self._config = config or ScoringConfig()
        self._config.validate()
        self.time_scorer = TimePatternScorer(tz)

    # ------------------------------------------------------------------ #
    #  Configuración                                                     #
    # ------------------------------------------------------------------ #

    def get_config(self) -> ScoringConfig:
        return self._config

    def update_config(self, changes: Mapping) -> ScoringConfig:
        """
        Aplica solo las claves enviadas. Si la configuración resultante
        no es válida lanza InvalidConfigurationException y se mantiene
        la anterior.
        """
        changes = {k: v for k, v in changes.items() if v is not None}
        if "default_weights" in changes:
            merged = dict(self._config.default_weights)
            merged.update({RiskFactor(k): float(v) for k, v in changes["default_weights"].items()})
            changes["default_weights"] = merged
        try:
            candidate = replace(self._config, **changes)
        except TypeError as e:
            raise InvalidConfigurationException(f"Parámetro desconocido: {e}")
        candidate.validate()
        self._config = candidate
        logger.info(f"[Scoring] Configuración actualizada: {sorted(changes)}")
        return candidate

    def velocity_window_start(self, timestamp: datetime) -> datetime:
        return timestamp - timedelta(minutes=self._config.velocity_window_minutes)

    def effective_weights(
        self,
        adaptive: Optional[Mapping[str, float]],
        learning_enabled: bool = True,
    ) -> dict[str, float]:
        weights = {f.value: float(w) for f, w in self._config.default_weights.items()}
        if adaptive and learning_enabled:
            for factor in ORDINARY_FACTORS:
                if factor.value in adaptive:
                    weights[factor.value] = float(adaptive[factor.value])
        return weights

    # ------------------------------------------------------------------ #
    #  Scoring                                                           #
    # ------------------------------------------------------------------ #

    def score(
        self,
        context:          TransactionContext,
        history:          Optional[UserHistoryProfile],
        weights:          Optional[Mapping[str, float]] = None,
        reputation:       Optional[ReputationVerdict] = None,
        circle_reported:  bool = False,
        velocity:         Optional[VelocityWindow] = None,
        learning_enabled: bool = True,
    ) -> RiskAssessment:
        """
        history=None o velocity=None significan que la lectura falló:
        los factores que dependen de ese insumo se degradan a 0.
        """
        if reputation is not None and reputation.whitelisted:
            return RiskAssessment(
                total_score        = 0,
                risk_level         = RiskLevel.LOW,
                contributions      = {
                    RiskFactor.WHITELIST_HIT.value: OVERRIDE_WEIGHTS[RiskFactor.WHITELIST_HIT]
                },
                reasons            = ("Destinatario verificado en lista blanca",),
                suggested_decision = DecisionAction.APPROVE,
                amount             = context.amount,
                whitelist_hit      = True,
            )

        if reputation is not None and reputation.flagged:
            tier = reputation.tier.value if reputation.tier else "unknown"
            return RiskAssessment(
                total_score        = 100,
                risk_level         = RiskLevel.CRITICAL,
                contributions      = {
                    RiskFactor.BLACKLIST_HIT.value: OVERRIDE_WEIGHTS[RiskFactor.BLACKLIST_HIT]
                },
                reasons            = (
                    f"Destinatario en lista negra (riesgo {tier}): "
                    f"{reputation.reason or 'reportado por fraude'}",
                ),
                suggested_decision = DecisionAction.BLOCK,
                amount             = context.amount,
                blacklist_hit      = True,
            )

        effective = self.effective_weights(weights, learning_enabled)
        contributions: dict[str, float] = {}
        reasons: list[str] = []
        degraded: list[str] = []
        total = 0.0

        if circle_reported:
            penalty = float(self._config.circle_report_penalty)
            contributions[RiskFactor.CIRCLE_REPORT.value] = penalty
            reasons.append("Un contacto de tu círculo de confianza reportó a este destinatario")
            total += penalty

        analyzers: dict[RiskFactor, Callable[[], FactorScore]] = {
            RiskFactor.AMOUNT_ANOMALY:     lambda: self._amount(context, history),
            RiskFactor.TIME_PATTERN:       lambda: self._time(context, history),
            RiskFactor.NEW_PAYEE:          lambda: self._payee(context, history),
            RiskFactor.DEVICE_FINGERPRINT: lambda: self._device(context, history),
            RiskFactor.LOCATION_ANOMALY:   lambda: self._location(context, history),
            RiskFactor.VELOCITY_CHECK:     lambda: self._velocity(context, velocity),
        }

        for factor in ORDINARY_FACTORS:
            result = self._run_factor(factor, analyzers[factor], history, velocity)
            if result is None:
                degraded.append(factor.value)
                contributions[factor.value] = 0.0
                reasons.append(f"{factor.value}: datos no disponibles, factor omitido")
                continue

            points = result.score * effective[factor.value] / 100.0
            contributions[factor.value] = points
            if result.score > 0:
                total += points
                reasons.append(result.reason)

        final = min(100, max(0, int(math.floor(total + 0.5))))
        level = risk_level_for(final)

        logger.info(
            f"[Scoring] user={context.user_id}  payee={context.payee}  "
            f"score={final} ({level.value})  degraded={degraded}"
        )

        return RiskAssessment(
            total_score        = final,
            risk_level         = level,
            contributions      = contributions,
            reasons            = tuple(reasons),
            suggested_decision = suggested_decision_for(final),
            amount             = context.amount,
            circle_reported    = circle_reported,
            degraded_factors   = tuple(degraded),
        )

    def _run_factor(
        self,
        factor:   RiskFactor,
        analyzer: Callable[[], FactorScore],
        history:  Optional[UserHistoryProfile],
        velocity: Optional[VelocityWindow],
    ) -> Optional[FactorScore]:
        if history is None and factor in _HISTORY_FACTORS:
            return None
        if velocity is None and factor == RiskFactor.VELOCITY_CHECK:
            return None
        try:
            result = analyzer()
        except Exception as e:
            logger.error(f"[Scoring] Factor {factor.value} falló: {e}")
            return None
        result.score = max(0, min(100, int(result.score)))
        return result

    # ------------------------------------------------------------------ #
    #  Factores                                                          #
    # ------------------------------------------------------------------ #

    def _amount(self, ctx: TransactionContext, history: UserHistoryProfile) -> FactorScore:
        cfg    = self._config
        amount = ctx.amount

        if history.transaction_count < MIN_TX_FOR_AVERAGE:
            if amount > cfg.very_high_amount:
                return FactorScore(80, f"Monto muy alto ({amount:,.0f}) con poco historial")
            if amount > cfg.high_amount:
                return FactorScore(50, f"Monto alto ({amount:,.0f}) con poco historial")
            return FactorScore(0)

        candidates = [FactorScore(0)]
        avg = history.average_amount
        if avg > 0 and amount > 4 * avg:
            candidates.append(FactorScore(60, f"Monto {amount / avg:.1f}x tu promedio ({avg:,.0f})"))
        elif avg > 0 and amount > 2.5 * avg:
            candidates.append(FactorScore(40, f"Monto {amount / avg:.1f}x tu promedio ({avg:,.0f})"))

        if amount > cfg.very_high_amount:
            candidates.append(FactorScore(100, f"Monto muy alto ({amount:,.0f})"))
        elif amount > cfg.high_amount:
            candidates.append(FactorScore(70, f"Monto alto ({amount:,.0f})"))

        return max(candidates, key=lambda c: c.score)

    def _time(self, ctx: TransactionContext, history: UserHistoryProfile) -> FactorScore:
        result = self.time_scorer.score(
            ctx.timestamp, history.hour_counts, history.transaction_count
        )
        return FactorScore(result.score, result.reason)

    def _payee(self, ctx: TransactionContext, history: UserHistoryProfile) -> FactorScore:
        if ctx.payee in history.known_payees:
            return FactorScore(0)
        return FactorScore(100, f"Primer pago a {ctx.payee}")

    def _device(self, ctx: TransactionContext, history: UserHistoryProfile) -> FactorScore:
        device = (ctx.device_id or "").strip()
        if device.lower() in _PLACEHOLDER_DEVICES:
            return FactorScore(60, "Información del dispositivo no disponible")
        if device not in history.known_devices:
            return FactorScore(100, "Dispositivo no reconocido")
        return FactorScore(0)

    def _location(self, ctx: TransactionContext, history: UserHistoryProfile) -> FactorScore:
        city = (ctx.city or "").strip()
        if not city or city.lower() == "unknown":
            return FactorScore(30, "Ubicación no disponible")
        if history.transaction_count < MIN_TX_FOR_LOCATION or not history.common_city:
            return FactorScore(10, "Aún se establece tu ubicación habitual")
        if city.lower() != history.common_city.lower():
            return FactorScore(70, f"Pago desde {city}, tu ciudad habitual es {history.common_city}")
        return FactorScore(0)

    def _velocity(self, ctx: TransactionContext, window: VelocityWindow) -> FactorScore:
        cfg    = self._config
        count  = window.count + 1
        amount = window.total_amount + ctx.amount

        if amount > cfg.velocity_amount:
            return FactorScore(
                90,
                f"Monto acumulado alto ({amount:,.0f} en {cfg.velocity_window_minutes} min)",
            )
        if count >= cfg.velocity_count:
            return FactorScore(
                80, f"{count} pagos en {cfg.velocity_window_minutes} minutos"
            )
        return FactorScore(0)
