"""
middlewares.py
--------------
Middlewares HTTP del Motor de Riesgo P2P.

  1. setup_cors()              → orígenes del frontend web y móvil
  2. RequestLoggingMiddleware  → X-Request-ID y latencia por request
  3. SecurityHeadersMiddleware → headers de seguridad en las respuestas

Orden de registro en main.py (se ejecutan al revés):
  CORS → SecurityHeaders → RequestLogging
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# La evaluación debe responder en menos de 500ms
SLOW_REQUEST_MS = 500


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Propaga X-Request-ID (o genera uno) y registra método, ruta,
    status y latencia. Las evaluaciones lentas se registran como warning.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        log = logger.warning if elapsed_ms > SLOW_REQUEST_MS else logger.info
        log(
            f"[HTTP] {request.method} {request.url.path} → {response.status_code}  "
            f"{elapsed_ms:.1f}ms  rid={request_id}"
        )
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, hsts: bool = True):
        super().__init__(app)
        self.hsts = hsts

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"]        = "DENY"
        response.headers["Referrer-Policy"]        = "strict-origin-when-cross-origin"
        # Las decisiones de riesgo nunca deben quedar en cachés intermedias
        response.headers["Cache-Control"]          = "no-store, private"
        if self.hsts:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response


def setup_cors(app: FastAPI, allowed_origins: list[str]) -> None:
    """
    Llamar desde main.py antes de registrar otros middlewares:
        setup_cors(app, settings.ALLOWED_ORIGINS)
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins     = allowed_origins,
        allow_credentials = True,
        allow_methods     = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers     = ["Content-Type", "Authorization", "X-Request-ID"],
        max_age           = 600,
    )
