"""
main.py
-------
Entry point del Motor de Riesgo P2P.

Arranque (lifespan):
  1. Redis → si no responde se usa la NullVerdictCache y el motor sigue
     contra la base de datos
  2. Tablas (solo en DEBUG; en producción se usan migraciones)
  3. Armado de servicios con las implementaciones reales
  4. Backfill de pesos base en usuarios sin pesos adaptativos

Orden de registro de middlewares (se ejecutan al revés):
  1. CORS
  2. SecurityHeaders
  3. RequestLogging
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from motor_riesgo.api.middlewares import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    setup_cors,
)
from motor_riesgo.api.routers import admin, feedback, reputation, transactions
from motor_riesgo.core.config import settings
from motor_riesgo.core.exceptions import (
    DecisionEngineUnavailableException,
    InvalidConfigurationException,
    RiskEngineException,
)
from motor_riesgo.infrastructure.cache.redis_client import RedisManager
from motor_riesgo.infrastructure.cache.verdict_cache import NullVerdictCache, RedisVerdictCache
from motor_riesgo.infrastructure.database.history_repository import SqlUserHistoryStore
from motor_riesgo.infrastructure.database.reputation_repository import SqlReputationStore
from motor_riesgo.infrastructure.database.session import AsyncSessionLocal, engine, init_db
from motor_riesgo.infrastructure.geo.geo_resolver import NominatimGeoResolver
from motor_riesgo.infrastructure.messaging.notifier import EmailNotifier, LogNotifier
from motor_riesgo.services.container import build_services

logging.basicConfig(
    level  = settings.LOG_LEVEL.upper(),
    format = "%(asctime)s %(levelname)-8s %(name)s  %(message)s",
)
logger = logging.getLogger(__name__)


async def _build_verdict_cache(redis_manager: RedisManager):
    if not settings.REPUTATION_CACHE_ENABLED:
        logger.info("[Startup] Caché de reputación deshabilitada por configuración")
        return NullVerdictCache()
    try:
        await redis_manager.connect()
    except Exception as e:
        logger.error(f"[Startup] Redis no disponible, se usa caché nula: {e}")
        return NullVerdictCache()
    return RedisVerdictCache(redis_manager.client)


def _build_notifier():
    if not settings.SMTP_HOST:
        return LogNotifier()
    return EmailNotifier(
        hostname = settings.SMTP_HOST,
        port     = settings.SMTP_PORT,
        username = settings.SMTP_USER,
        password = settings.SMTP_PASSWORD,
        sender   = settings.EMAIL_FROM,
        domain   = settings.ALERT_EMAIL_DOMAIN,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ── Startup ───────────────────────────────────────────────────────
    redis_manager = RedisManager(settings.REDIS_URL)
    verdict_cache = await _build_verdict_cache(redis_manager)

    if settings.DEBUG:
        await init_db()

    try:
        services = build_services(
            history          = SqlUserHistoryStore(AsyncSessionLocal, settings.LOCAL_TIMEZONE),
            reputation_store = SqlReputationStore(AsyncSessionLocal),
            verdict_cache    = verdict_cache,
            notifier         = _build_notifier(),
            geo              = NominatimGeoResolver(
                settings.GEOCODER_URL,
                timeout_seconds = settings.GEOCODER_TIMEOUT_SECONDS,
                user_agent      = settings.GEOCODER_USER_AGENT,
            ),
            local_timezone   = settings.LOCAL_TIMEZONE,
            cache_ttl        = settings.REPUTATION_CACHE_TTL_SECONDS,
        )
    except InvalidConfigurationException as e:
        raise DecisionEngineUnavailableException(e.message)

    await services.learner.backfill_defaults()

    app.state.redis    = redis_manager
    app.state.services = services
    logger.info(f"[Startup] Motor de riesgo listo — env={settings.ENVIRONMENT}")
    yield
    # ── Shutdown ──────────────────────────────────────────────────────
    await redis_manager.disconnect()
    await engine.dispose()


app = FastAPI(
    title    = "Motor de Riesgo P2P",
    version  = "1.0.0",
    docs_url = "/docs"  if settings.DEBUG else None,
    redoc_url= "/redoc" if settings.DEBUG else None,
    lifespan = lifespan,
)

# ── Middlewares (registrar en este orden exacto) ──────────────────────
setup_cors(app, allowed_origins=settings.ALLOWED_ORIGINS)
app.add_middleware(SecurityHeadersMiddleware, hsts=settings.ENVIRONMENT == "production")
app.add_middleware(RequestLoggingMiddleware)

# ── Routers ───────────────────────────────────────────────────────────
app.include_router(transactions.router)
app.include_router(feedback.router)
app.include_router(reputation.router)
app.include_router(admin.router)

# ── Handler global de excepciones ────────────────────────────────────
@app.exception_handler(RiskEngineException)
async def risk_exception_handler(
    request: Request, exc: RiskEngineException
) -> JSONResponse:
    return JSONResponse(
        status_code = exc.status_code,
        content     = {"error": exc.message},
    )

# ── Health check ──────────────────────────────────────────────────────
@app.get("/health")
async def health_check(request: Request):
    redis_manager = getattr(request.app.state, "redis", None)
    redis_ok = bool(redis_manager and redis_manager.is_connected and await redis_manager.ping())
    return {
        "status":      "ok",
        "environment": settings.ENVIRONMENT,
        "redis":       "ok" if redis_ok else "degraded",
    }
