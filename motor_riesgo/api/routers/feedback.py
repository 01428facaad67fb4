"""
feedback.py — Router de feedback y aprendizaje adaptativo
--------------------------------------------------------
Expone:
  POST /v1/feedback               → "not_fraud" / "confirmed_fraud" sobre una transacción
  GET  /v1/feedback/stats         → Estadísticas y pesos actuales del usuario
  POST /v1/feedback/reset         → Restaura los pesos base
  PUT  /v1/feedback/learning      → Activa o desactiva el aprendizaje
"""

from fastapi import APIRouter, Depends

from motor_riesgo.api.dependencies import get_current_user, get_services
from motor_riesgo.domain.entities import LearningStats
from motor_riesgo.domain.schemas import (
    CurrentUser,
    FeedbackRequest,
    FeedbackResponse,
    LearningStatsResponse,
    LearningToggleRequest,
)
from motor_riesgo.services.container import RiskServices

router = APIRouter(prefix="/v1/feedback", tags=["Feedback"])


def _stats_response(
    stats: LearningStats, weights: dict[str, float], learning_enabled: bool
) -> LearningStatsResponse:
    return LearningStatsResponse(
        total_feedback     = stats.total_feedback,
        false_positives    = stats.false_positives,
        false_negatives    = stats.false_negatives,
        confidence         = stats.confidence,
        last_adjustment_at = stats.last_adjustment_at,
        learning_enabled   = learning_enabled,
        weights            = weights,
    )


@router.post("", response_model=FeedbackResponse)
async def submit_feedback(
    payload:  FeedbackRequest,
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    outcome = await services.orchestrator.submit_feedback(
        user.user_id, payload.transaction_id, payload.feedback_type, payload.comment
    )
    return FeedbackResponse(
        transaction_id = outcome.transaction_id,
        adjustment     = outcome.adjustment.value,
        weights        = outcome.weights,
        stats          = _stats_response(outcome.stats, outcome.weights, outcome.learning_enabled),
    )


@router.get("/stats", response_model=LearningStatsResponse)
async def learning_stats(
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    state = await services.learner.get_stats(user.user_id)
    return _stats_response(state.stats, state.weights, state.learning_enabled)


@router.post("/reset", response_model=LearningStatsResponse)
async def reset_weights(
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    state = await services.learner.reset_weights(user.user_id)
    return _stats_response(state.stats, state.weights, state.learning_enabled)


@router.put("/learning", response_model=LearningStatsResponse)
async def toggle_learning(
    payload:  LearningToggleRequest,
    user:     CurrentUser  = Depends(get_current_user),
    services: RiskServices = Depends(get_services),
):
    state = await services.learner.set_learning_enabled(user.user_id, payload.enabled)
    return _stats_response(state.stats, state.weights, state.learning_enabled)
