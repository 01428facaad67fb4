"""
redis_client.py
---------------
Cliente Redis del Motor de Riesgo P2P.

Redis solo se usa como caché de veredictos de reputación. Si no está
disponible al arrancar, main.py registra el error y selecciona la
NullVerdictCache: el motor sigue funcionando contra la base de datos.

  - Pool de conexiones con parámetros explícitos
  - Health check al conectar: falla rápido si Redis no responde
  - Retry automático con backoff exponencial (3 intentos)
  - Propiedad .is_connected para decidir qué caché usar
"""

import asyncio
import logging

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import BusyLoadingError, ConnectionError, TimeoutError

logger = logging.getLogger(__name__)


class RedisManager:
    """
    Gestor del cliente Redis con reconexión automática y health check.

      max_connections=100        → coroutines simultáneas esperando conexión
      socket_timeout=0.5         → una lectura de caché que tarda más de
                                   500ms se trata como miss
      socket_connect_timeout=2.0 → más generoso que el de operación
      health_check_interval=30   → el pool verifica sus conexiones cada 30s
    """

    def __init__(self, url: str):
        self.url = url
        self.client: redis.Redis | None = None
        self._connected: bool = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self.client is not None

    async def connect(self) -> None:
        """
        Inicializa el pool y verifica que Redis responda.
        Lanza excepción si Redis no está disponible.
        """
        logger.info(f"[Redis] Conectando a {self.url} ...")

        retry = Retry(
            backoff          = ExponentialBackoff(cap=0.5, base=0.1),
            retries          = 3,
            supported_errors = (ConnectionError, TimeoutError, BusyLoadingError),
        )

        self.client = redis.Redis.from_url(
            self.url,
            max_connections         = 100,
            socket_timeout          = 0.5,
            socket_connect_timeout  = 2.0,
            socket_keepalive        = True,
            health_check_interval   = 30,
            retry                   = retry,
            retry_on_timeout        = True,
            # Los veredictos se guardan como JSON en texto
            decode_responses        = True,
        )

        await self._health_check(raise_on_fail=True)
        self._connected = True
        logger.info("[Redis] Conexión establecida y verificada ✓")

    async def disconnect(self) -> None:
        if self.client:
            try:
                await self.client.aclose()
                logger.info("[Redis] Conexiones cerradas correctamente ✓")
            except Exception as e:
                logger.error(f"[Redis] Error al cerrar conexiones: {e}")
            finally:
                self._connected = False

    async def _health_check(self, raise_on_fail: bool = False) -> bool:
        """
        raise_on_fail=True  → lanza excepción (usar en startup)
        raise_on_fail=False → retorna bool (usar en /health)
        """
        try:
            response = await asyncio.wait_for(self.client.ping(), timeout=2.0)
            if response:
                return True
            raise ConnectionError("Redis PING retornó False")

        except asyncio.TimeoutError:
            msg = "[Redis] Health check timeout — Redis no responde en 2s"
            logger.error(msg)
            if raise_on_fail:
                raise ConnectionError(msg)
            return False

        except Exception as e:
            logger.error(f"[Redis] Health check falló: {e}")
            if raise_on_fail:
                raise
            return False

    async def ping(self) -> bool:
        if not self.client:
            return False
        return await self._health_check(raise_on_fail=False)
