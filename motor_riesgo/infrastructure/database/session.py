"""
session.py
----------
Configuración de la conexión asíncrona a la base de datos.

Provee:
  - engine: motor SQLAlchemy async (pool configurado solo en PostgreSQL)
  - AsyncSessionLocal: fábrica de sesiones
  - init_db: crea tablas en desarrollo (en producción usa migraciones)
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from motor_riesgo.core.config import settings


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    # Fix asyncpg issue with sslmode
    if "?sslmode=" in url:
        url = url.split("?sslmode=")[0]

    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)

    return create_async_engine(
        url,
        echo           = echo,   # Loggea SQL solo en desarrollo
        pool_pre_ping  = True,   # Verifica conexión antes de usarla
        pool_size      = 10,     # Conexiones permanentes en el pool
        max_overflow   = 20,     # Conexiones extra bajo carga alta
    )


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind             = bind,
        class_           = AsyncSession,
        expire_on_commit = False,
        autoflush        = False,
    )


# ── Motor y fábrica de sesiones ───────────────────────────────────────
engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
AsyncSessionLocal = build_sessionmaker(engine)


# ── Init para desarrollo ─────────────────────────────────────────────
async def init_db(bind: AsyncEngine | None = None) -> None:
    """
    Crea todas las tablas definidas en models.py.
    Solo para desarrollo o pruebas. En producción se usan migraciones.
    """
    from motor_riesgo.domain.models import Base
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
