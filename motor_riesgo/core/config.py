from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Configuracion general
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    SECRET_KEY: str

    # Zona horaria con la que se evalúan la hora del día y la ventana nocturna
    LOCAL_TIMEZONE: str = "UTC"

    # Base de datos (postgresql+asyncpg en producción, sqlite+aiosqlite en pruebas)
    DATABASE_URL: str

    # Redis — caché de veredictos de reputación
    REDIS_URL: str = "redis://localhost:6379/0"
    REPUTATION_CACHE_ENABLED: bool = True
    REPUTATION_CACHE_TTL_SECONDS: int = 1800

    # JWT emitido por el servicio de autenticación externo
    ALGORITHM: str = "HS256"
    ADMIN_ROLES: list[str] = ["admin", "superadmin"]

    # Reverse geocoding (Nominatim o compatible)
    GEOCODER_URL: str = "https://nominatim.openstreetmap.org/reverse"
    GEOCODER_TIMEOUT_SECONDS: float = 1.5
    GEOCODER_USER_AGENT: str = "motor-riesgo-p2p/1.0"

    # SMTP para alertas — si SMTP_HOST está vacío se usa el notificador por log
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USER: str | None = None
    SMTP_PASSWORD: str | None = None
    EMAIL_FROM: str = "alertas@motor-riesgo.local"
    ALERT_EMAIL_DOMAIN: str = "usuarios.motor-riesgo.local"

    # CORS — lista de orígenes permitidos separados por coma en el .env
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    @field_validator("ALLOWED_ORIGINS", "ADMIN_ROLES", mode="before")
    @classmethod
    def parse_csv(cls, v):
        """Permite definir listas como string separado por comas en .env"""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("REPUTATION_CACHE_TTL_SECONDS")
    @classmethod
    def ttl_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("REPUTATION_CACHE_TTL_SECONDS debe ser mayor a 0")
        return v

    model_config = SettingsConfigDict(
        env_file          = ".env",
        env_file_encoding = "utf-8",
        case_sensitive    = True,
        extra             = "ignore",
    )


settings = Settings()
