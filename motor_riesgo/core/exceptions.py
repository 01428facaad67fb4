"""
exceptions.py
-------------
Excepciones personalizadas del Motor de Riesgo P2P.

Todas heredan de RiskEngineException para poder capturarlas
en un solo handler global en main.py:

    @app.exception_handler(RiskEngineException)
    async def risk_exception_handler(request: Request, exc: RiskEngineException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
"""


class RiskEngineException(Exception):
    """Base de todas las excepciones del motor."""
    status_code: int = 500
    message: str = "Error interno del motor de riesgo."

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.message
        super().__init__(self.message)


# ─────────────────────────────────────────────────────────────────────
# Errores de configuración
# ─────────────────────────────────────────────────────────────────────

class InvalidConfigurationException(RiskEngineException):
    """Actualización de umbrales o pesos fuera de rango o inconsistente."""
    status_code = 400
    message = "Configuración inválida. Se mantiene la configuración anterior."


# ─────────────────────────────────────────────────────────────────────
# Acciones duplicadas o sobre recursos inexistentes
# ─────────────────────────────────────────────────────────────────────

class DuplicateBlockException(RiskEngineException):
    """El usuario ya había bloqueado este identificador."""
    status_code = 409
    message = "Ya bloqueaste este destinatario."


class DuplicateFeedbackException(RiskEngineException):
    """La transacción ya recibió feedback del usuario."""
    status_code = 409
    message = "Ya enviaste feedback para esta transacción."


class BlockNotFoundException(RiskEngineException):
    status_code = 404
    message = "No tienes bloqueado este destinatario."


class TransactionNotFoundException(RiskEngineException):
    status_code = 404
    message = "Transacción no encontrada."


class UserNotFoundException(RiskEngineException):
    status_code = 404
    message = "Usuario no encontrado."


class ReputationEntryNotFoundException(RiskEngineException):
    status_code = 404
    message = "No existe una entrada de reputación para este identificador."


# ─────────────────────────────────────────────────────────────────────
# Transiciones de estado de transacciones
# ─────────────────────────────────────────────────────────────────────

class DelayNotExpiredException(RiskEngineException):
    """Se intentó confirmar una transacción DELAY antes de su expiración."""
    status_code = 409
    message = "El periodo de espera de seguridad aún no termina."


class InvalidTransactionStateException(RiskEngineException):
    status_code = 409
    message = "La transacción no admite esta acción en su estado actual."


class LearningConflictException(RiskEngineException):
    """Demasiadas escrituras concurrentes sobre los pesos del mismo usuario."""
    status_code = 409
    message = "No se pudo registrar el feedback por actividad concurrente. Intenta de nuevo."


class OverrideNotAllowedException(RiskEngineException):
    """El rol del usuario no puede anular la decisión del motor."""
    status_code = 403
    message = "No tienes permisos para anular esta decisión."


# ─────────────────────────────────────────────────────────────────────
# Reputación
# ─────────────────────────────────────────────────────────────────────

class WhitelistedIdentifierException(RiskEngineException):
    """Se intentó reportar un identificador verificado en la lista blanca."""
    status_code = 400
    message = "Este destinatario está verificado y no puede ser reportado."


# ─────────────────────────────────────────────────────────────────────
# Errores de infraestructura
# ─────────────────────────────────────────────────────────────────────

class DecisionEngineUnavailableException(RiskEngineException):
    """El motor no pudo inicializarse. Condición fatal de arranque."""
    status_code = 503
    message = "Motor de decisión no disponible."


class CacheInvalidationException(RiskEngineException):
    """El cambio quedó guardado pero la caché de reputación no se pudo invalidar."""
    status_code = 503
    message = "Cambio registrado, pero la caché de reputación no se pudo actualizar. Reintenta."
