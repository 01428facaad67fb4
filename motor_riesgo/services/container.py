"""
container.py
------------
Ensambla los servicios del motor a partir de sus colaboradores.

main.py lo llama una vez en el lifespan con las implementaciones reales
(SQLAlchemy, Redis o caché nula, Nominatim, SMTP o log); las pruebas lo
llaman con dobles en memoria. Los routers reciben el contenedor por
Depends(get_services).
"""

from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo

from motor_riesgo.domain.ports import (
    GeoResolver,
    Notifier,
    ReputationStore,
    UserHistoryStore,
    VerdictCache,
)
from motor_riesgo.services.adaptive_learner import AdaptiveWeightLearner
from motor_riesgo.services.decision_engine import DecisionEngine
from motor_riesgo.services.reputation_cache import DEFAULT_TTL_SECONDS, ReputationCache
from motor_riesgo.services.reputation_escalation import ReputationEscalation
from motor_riesgo.services.risk_orchestrator import RiskOrchestrator
from motor_riesgo.services.risk_scoring_engine import RiskScoringEngine


@dataclass
class RiskServices:
    reputation:   ReputationCache
    escalation:   ReputationEscalation
    scoring:      RiskScoringEngine
    decisions:    DecisionEngine
    learner:      AdaptiveWeightLearner
    orchestrator: RiskOrchestrator
    history:      UserHistoryStore


def build_services(
    history:          UserHistoryStore,
    reputation_store: ReputationStore,
    verdict_cache:    VerdictCache,
    notifier:         Notifier,
    geo:              Optional[GeoResolver] = None,
    local_timezone:   str = "UTC",
    cache_ttl:        int = DEFAULT_TTL_SECONDS,
) -> RiskServices:
    reputation = ReputationCache(reputation_store, verdict_cache, ttl_seconds=cache_ttl)
    scoring    = RiskScoringEngine(tz=ZoneInfo(local_timezone))
    decisions  = DecisionEngine()
    learner    = AdaptiveWeightLearner(history)
    escalation = ReputationEscalation(reputation_store, reputation, history, notifier)

    orchestrator = RiskOrchestrator(
        reputation = reputation,
        scoring    = scoring,
        decisions  = decisions,
        learner    = learner,
        history    = history,
        notifier   = notifier,
        geo        = geo,
    )
    return RiskServices(
        reputation   = reputation,
        escalation   = escalation,
        scoring      = scoring,
        decisions    = decisions,
        learner      = learner,
        orchestrator = orchestrator,
        history      = history,
    )
