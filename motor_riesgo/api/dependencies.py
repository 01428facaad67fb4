"""
dependencies.py
---------------
Dependencias reutilizables para inyectar en los routers de FastAPI.

get_services:
  Contenedor de servicios armado en el lifespan (app.state.services).
  Las pruebas lo reemplazan con app.dependency_overrides.

get_current_user:
  Lee el JWT del header Authorization, lo valida y retorna el usuario.
  El token lo emite el servicio de autenticación externo con los
  claims "sub" (id de usuario) y "role".

      @router.get("/blocks")
      async def blocks(user: CurrentUser = Depends(get_current_user)):
          ...

require_admin:
  Igual que get_current_user pero exige rol admin o superadmin.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from motor_riesgo.core.config import settings
from motor_riesgo.domain.schemas import CurrentUser, UserRole
from motor_riesgo.services.container import RiskServices


# ── Servicios ─────────────────────────────────────────────────────────

def get_services(request: Request) -> RiskServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE,
            detail      = "Motor de riesgo no inicializado",
        )
    return services


# ── Autenticación JWT ─────────────────────────────────────────────────

# Esquema Bearer para que Swagger muestre el candado en los endpoints
bearer_scheme = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code = status.HTTP_401_UNAUTHORIZED,
        detail      = detail,
        headers     = {"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> CurrentUser:
    """
    Extrae y valida el JWT del header Authorization.

    Lanza HTTP 401 si el token es inválido, expiró o no trae "sub".
    Un rol desconocido se degrada a "user".
    """
    try:
        payload = jwt.decode(
            credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        raise _unauthorized("Token inválido, manipulado o expirado")

    user_id = payload.get("sub")
    if not user_id:
        raise _unauthorized("El token no contiene identificación de usuario")

    raw_role = payload.get("role", UserRole.USER.value)
    try:
        role = UserRole(raw_role)
    except ValueError:
        role = UserRole.USER
    if role != UserRole.USER and raw_role not in settings.ADMIN_ROLES:
        role = UserRole.USER

    return CurrentUser(user_id=str(user_id), role=role)


async def require_admin(
    user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(
            status_code = status.HTTP_403_FORBIDDEN,
            detail      = "Se requiere rol de administrador",
        )
    return user
